"""
Core variant resolution engine for the product configurator.

Resolution Approach:
    - Every attribute value is normalized to a canonical string before comparison
      (variant specs are untyped: "16GB", 16, 16.0 and True all show up in practice)
    - Variants are grouped by their primary facet ("condition") in a VariantIndex
    - A facet change filters candidates on the changed facet, prefers the current
      condition, then scores candidates against the rest of the current selection
    - The winning variant's full facet set REPLACES the selection, so the selection
      never carries a facet the resolved variant does not have

Scoring:
    - +1 for each previously-selected facet (other than the changed one) the candidate keeps
    - +0.5 if the candidate is in stock
    - Ties go to the first candidate in catalog order

Matching policy:
    - Configurator matching is PERMISSIVE: a variant missing a selected facet is not
      excluded for that facet alone (sparse data entry must not strand a shopper)
    - Catalog rule filtering (rules_engine.py) is CONSERVATIVE: a missing attribute
      fails the rule. The two policies are intentionally different.
"""

import logging
import math
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
CONDITION_KEY = "condition"      # Mandatory primary facet on every variant
PREFERRED_CONDITION = "New"      # Default selection prefers new, in-stock items
FACET_MATCH_SCORE = 1.0          # Per retained facet when re-resolving a selection
IN_STOCK_BONUS = 0.5             # Tie-breaker toward purchasable variants

STOCK_STATUS_IN_STOCK = "IN_STOCK"
STOCK_STATUS_OUT_OF_STOCK = "OUT_OF_STOCK"
STOCK_STATUS_NO_MATCH = "NO_MATCH"      # Selection resolves to no variant

FULFILLMENT_INSTANT = "Available for instant delivery"
FULFILLMENT_ON_DEMAND = "Sourced on demand, ships in 14-21 days"

Variant = Dict
Selection = Dict[str, str]


# ---------------------------------------------------------------------------
# Attribute normalization
# ---------------------------------------------------------------------------

def normalize(value) -> str:
    """
    Convert an attribute value to its canonical comparable string.

    Rules:
        - None and NaN (pandas missing cells) -> ""
        - booleans -> "true" / "false"
        - integral floats -> integer text (8.0 -> "8"), so a facet typed as a
          number on one variant and as text on another still compares equal
        - everything else -> str(value), no trimming or case folding
    """
    if value is None:
        return ""
    if isinstance(value, (bool, np.bool_)):
        return "true" if value else "false"
    if isinstance(value, (float, np.floating)):
        if math.isnan(value):
            return ""
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if float(value).is_integer():
            return str(int(value))
        return repr(float(value))
    if isinstance(value, np.integer):
        return str(int(value))
    return str(value)


def get_specs(variant: Variant) -> Dict:
    """Return the variant's specs map, or {} when missing or not a mapping."""
    specs = variant.get('specs')
    return specs if isinstance(specs, dict) else {}


def get_stock(variant: Variant) -> int:
    """Stock as an int; missing, None, NaN or unparseable stock counts as 0."""
    stock = variant.get('stock')
    if stock is None or isinstance(stock, (bool, np.bool_)):
        return 0
    try:
        stock = float(stock)
    except (TypeError, ValueError):
        return 0
    if math.isnan(stock):
        return 0
    return int(stock)


def variant_facets(variant: Variant) -> Selection:
    """
    Build the full facet set of a variant: condition + every specs key, normalized.

    This is the only way a Selection is ever materialized.
    """
    facets = {CONDITION_KEY: normalize(variant.get(CONDITION_KEY))}
    for key, value in get_specs(variant).items():
        if key == CONDITION_KEY:
            continue
        facets[key] = normalize(value)
    return facets


# ---------------------------------------------------------------------------
# Variant index
# ---------------------------------------------------------------------------

class VariantIndex:
    """
    Read-only view over one product's variants, grouped by normalized condition.

    Build once per product load; rebuild when the variant list changes.
    List order is preserved everywhere because it decides scoring ties.
    """

    def __init__(self, variants: Optional[List[Variant]] = None):
        self._variants: List[Variant] = list(variants or [])
        self._by_condition: Dict[str, List[Variant]] = {}
        self._facet_keys: Dict[str, List[str]] = {}

        for variant in self._variants:
            condition = normalize(variant.get(CONDITION_KEY))
            self._by_condition.setdefault(condition, []).append(variant)
            keys = self._facet_keys.setdefault(condition, [])
            for key in get_specs(variant):
                if key != CONDITION_KEY and key not in keys:
                    keys.append(key)

    def __len__(self) -> int:
        return len(self._variants)

    def __iter__(self):
        return iter(self._variants)

    @property
    def variants(self) -> List[Variant]:
        return list(self._variants)

    @property
    def conditions(self) -> List[str]:
        """Distinct normalized conditions, first-seen order."""
        return list(self._by_condition.keys())

    def variants_for(self, condition) -> List[Variant]:
        return list(self._by_condition.get(normalize(condition), []))

    def facet_keys(self, condition) -> List[str]:
        """Specs keys seen on variants of a condition, first-seen order."""
        return list(self._facet_keys.get(normalize(condition), []))

    def facet_value(self, variant: Variant, facet_key: str) -> str:
        return facet_value(variant, facet_key)


def facet_value(variant: Variant, facet_key: str) -> str:
    """Normalized value of one facet on a variant ("" when the variant lacks it)."""
    if facet_key == CONDITION_KEY:
        return normalize(variant.get(CONDITION_KEY))
    return normalize(get_specs(variant).get(facet_key))


def ensure_index(variants: Union[VariantIndex, List[Variant], None]) -> VariantIndex:
    """Accept either a prebuilt VariantIndex or a raw variant list."""
    if isinstance(variants, VariantIndex):
        return variants
    return VariantIndex(variants)


# ---------------------------------------------------------------------------
# Default selection
# ---------------------------------------------------------------------------

def pick_default_variant(variants: Union[VariantIndex, List[Variant]]) -> Optional[Variant]:
    """
    Choose the variant shown when a product is first opened.

    Priority order:
        1. First variant with condition "New" AND stock > 0
        2. First variant with stock > 0, any condition
        3. First variant, unconditionally
    """
    index = ensure_index(variants)
    if len(index) == 0:
        return None

    for variant in index:
        if facet_value(variant, CONDITION_KEY) == PREFERRED_CONDITION and get_stock(variant) > 0:
            return variant

    for variant in index:
        if get_stock(variant) > 0:
            return variant

    return index.variants[0]


def pick_default(variants: Union[VariantIndex, List[Variant]]) -> Selection:
    """Initial Selection for a product ({} when it has no variants)."""
    variant = pick_default_variant(variants)
    if variant is None:
        return {}
    return variant_facets(variant)


# ---------------------------------------------------------------------------
# Selection resolution
# ---------------------------------------------------------------------------

def find_candidates(
    changed_key: str,
    new_value,
    selections: Selection,
    index: VariantIndex,
) -> List[Variant]:
    """
    Variants carrying the requested value for the changed facet.

    For a non-condition facet, candidates are narrowed to the currently selected
    condition, unless that narrowing would leave nothing (then any condition
    offering the value is accepted).
    """
    target = normalize(new_value)
    candidates = [v for v in index if facet_value(v, changed_key) == target]

    if changed_key != CONDITION_KEY and candidates:
        current_condition = normalize(selections.get(CONDITION_KEY))
        same_condition = [
            v for v in candidates
            if facet_value(v, CONDITION_KEY) == current_condition
        ]
        if same_condition:
            candidates = same_condition
        else:
            logger.debug(
                "No %s=%r under condition %r; widening to %d variant(s) across conditions",
                changed_key, target, current_condition, len(candidates),
            )

    return candidates


def score_candidate(variant: Variant, changed_key: str, selections: Selection) -> float:
    """Score a candidate against the selection it is replacing."""
    score = 0.0
    for key, selected in selections.items():
        if key == changed_key:
            continue
        if facet_value(variant, key) == normalize(selected):
            score += FACET_MATCH_SCORE
    if get_stock(variant) > 0:
        score += IN_STOCK_BONUS
    return score


def best_candidate(
    candidates: List[Variant],
    changed_key: str,
    selections: Selection,
) -> Optional[Variant]:
    """First candidate with the strictly highest score (catalog order breaks ties)."""
    best = None
    best_score = -1.0
    for variant in candidates:
        score = score_candidate(variant, changed_key, selections)
        if score > best_score:
            best = variant
            best_score = score
    return best


def resolve(
    changed_key: str,
    new_value,
    selections: Optional[Selection],
    variants: Union[VariantIndex, List[Variant]],
) -> Tuple[Selection, Optional[Variant]]:
    """
    Apply one facet change and resolve the variant it leads to.

    Returns (new_selection, matched_variant). The new selection is always a fresh
    dict; the caller's selection is never mutated.

    Edge cases:
        - No variants: the selection comes back unchanged with no variant. The UI
          treats this as "unavailable for purchase", not as an error.
        - Requested value occurs on no variant: the selection is kept and the
          variant it already points at is returned (the default selection is
          used if nothing was selected yet).
    """
    index = ensure_index(variants)
    current = dict(selections or {})

    if len(index) == 0:
        return current, None

    candidates = find_candidates(changed_key, new_value, current, index)

    if not candidates:
        logger.debug("No variant offers %s=%r; keeping current selection", changed_key, new_value)
        if not current:
            default = pick_default_variant(index)
            return variant_facets(default), default
        return current, find_exact(current, index)

    winner = best_candidate(candidates, changed_key, current)
    return variant_facets(winner), winner


def find_exact(
    selections: Optional[Selection],
    variants: Union[VariantIndex, List[Variant]],
) -> Optional[Variant]:
    """
    Look up the variant a selection currently points at (read-only display).

    A variant matches when its condition equals the selected condition and every
    specs key it carries agrees with the selection. Selected facets the variant
    does not carry, and facets left unselected, never count as a mismatch.
    """
    selections = selections or {}
    condition = selections.get(CONDITION_KEY)
    if condition is None:
        return None

    index = ensure_index(variants)
    for variant in index.variants_for(condition):
        mismatch = False
        for key, value in get_specs(variant).items():
            selected = normalize(selections.get(key))
            if not selected:
                continue
            if normalize(value) != selected:
                mismatch = True
                break
        if not mismatch:
            return variant
    return None


# ---------------------------------------------------------------------------
# Facet availability
# ---------------------------------------------------------------------------

def options(
    variants: Union[VariantIndex, List[Variant]],
    selections: Optional[Selection],
) -> Dict[str, List[str]]:
    """
    Selectable values per facet for the configurator.

    Returns dict:
        'condition' -> every condition across all variants (never narrowed)
        <facet>     -> values offered by variants of the selected condition

    Values are plain string-sorted so the UI renders deterministically.
    """
    index = ensure_index(variants)
    selections = selections or {}

    result: Dict[str, List[str]] = {CONDITION_KEY: sorted(index.conditions)}

    values: Dict[str, set] = {}
    for variant in index.variants_for(selections.get(CONDITION_KEY, '')):
        for key, value in get_specs(variant).items():
            if key == CONDITION_KEY:
                continue
            values.setdefault(key, set()).add(normalize(value))

    for key, seen in values.items():
        result[key] = sorted(seen)
    return result


def is_available(
    key: str,
    value,
    variants: Union[VariantIndex, List[Variant]],
    selections: Optional[Selection],
) -> bool:
    """
    Whether a (facet, value) button should be enabled.

    Conditions are never disabled if any variant has them. Other facets are only
    available when a variant of the currently selected condition offers the value.
    """
    index = ensure_index(variants)
    target = normalize(value)

    if key == CONDITION_KEY:
        return target in index.conditions

    current_condition = (selections or {}).get(CONDITION_KEY, '')
    return any(facet_value(v, key) == target for v in index.variants_for(current_condition))


# ---------------------------------------------------------------------------
# Variant status (what the configurator shows next to the price)
# ---------------------------------------------------------------------------

def variant_status(variant: Optional[Variant]) -> str:
    """IN_STOCK / OUT_OF_STOCK for a resolved variant, NO_MATCH for None."""
    if variant is None:
        return STOCK_STATUS_NO_MATCH
    if get_stock(variant) <= 0:
        return STOCK_STATUS_OUT_OF_STOCK
    return STOCK_STATUS_IN_STOCK


def _price(value) -> Optional[float]:
    if value is None or isinstance(value, (bool, np.bool_)):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(price) else price


def describe_selection(
    product: Optional[Dict],
    variants: Union[VariantIndex, List[Variant]],
    selections: Optional[Selection],
) -> dict:
    """
    Summarize what the shopper is currently looking at.

    Returns dict:
        'variant':   resolved variant or None
        'price':     variant price, else the product's display price, else 0
        'status':    IN_STOCK / OUT_OF_STOCK / NO_MATCH
        'purchasable': True only for a resolved, in-stock variant
        'fulfillment': delivery message (None when nothing resolved)
        'combination_unavailable': a selection exists but matches no variant
    """
    product = product or {}
    selections = selections or {}
    variant = find_exact(selections, variants)
    status = variant_status(variant)

    price = _price(variant.get('price')) if variant is not None else None
    if price is None:
        price = _price(product.get('price'))
    if price is None:
        price = _price(product.get('base_price'))
    if price is None:
        price = 0.0

    if variant is None:
        fulfillment = None
    elif status == STOCK_STATUS_IN_STOCK:
        fulfillment = FULFILLMENT_INSTANT
    else:
        fulfillment = FULFILLMENT_ON_DEMAND

    return {
        'variant': variant,
        'price': price,
        'status': status,
        'purchasable': status == STOCK_STATUS_IN_STOCK,
        'fulfillment': fulfillment,
        'combination_unavailable': variant is None and bool(selections),
    }
