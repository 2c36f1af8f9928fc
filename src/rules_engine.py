"""
Declarative rule evaluation for merchandising sections and category filters.

A rule set is an ordered list of comparison rules, all of which must pass:

    [{'key': 'specs.Storage', 'operator': 'gte', 'value': 128},
     {'key': 'brand',         'operator': 'eq',  'value': 'Apple'}]

Policy:
    - An empty rule set matches every product
    - A rule whose target attribute is missing FAILS (the product is excluded).
      Catalog filtering is conservative: never show a product that cannot be
      verified to match. This is the opposite of the configurator's permissive
      handling of sparse specs in variant_matcher.py, and must stay that way.
    - Malformed rules (no key, unknown operator, non-numeric operands for
      numeric operators) fail closed instead of raising
"""

import json
import logging
import math
import re
from typing import Dict, List, Optional

import numpy as np

from variant_matcher import normalize

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
SPECS_PREFIX = "specs."

OPERATOR_EQ = "eq"
OPERATOR_NEQ = "neq"
OPERATOR_GT = "gt"
OPERATOR_LT = "lt"
OPERATOR_GTE = "gte"
OPERATOR_LTE = "lte"
OPERATOR_CONTAINS = "contains"

STRING_OPERATORS = {OPERATOR_EQ, OPERATOR_NEQ, OPERATOR_CONTAINS}
NUMERIC_OPERATORS = {OPERATOR_GT, OPERATOR_LT, OPERATOR_GTE, OPERATOR_LTE}
RULE_OPERATORS = STRING_OPERATORS | NUMERIC_OPERATORS

SECTION_TYPE_PRODUCT_ROW = "product_row"
SECTION_TYPE_BRAND_ROW = "brand_row"
SECTION_PRODUCT_LIMIT = 8   # Products shown per rail before "View all"

# Used when a category has no section layout configured
DEFAULT_SECTIONS = [
    {'id': 'default-featured', 'title': 'Featured', 'section_type': SECTION_TYPE_PRODUCT_ROW,
     'filter_rules': [], 'sort_order': 1, 'is_active': True},
    {'id': 'default-brands', 'title': 'Shop by Brand', 'section_type': SECTION_TYPE_BRAND_ROW,
     'filter_rules': [], 'sort_order': 2, 'is_active': True},
]

_SCALAR_TYPES = (str, int, float, bool, np.bool_, np.integer, np.floating)

# Numeric text accepted by to_number()
_DECIMAL_NUMBER = re.compile(r'^[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|Infinity)$')
_RADIX_NUMBER = re.compile(r'^0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$')


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------

def _is_missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, (float, np.floating)) and math.isnan(value):
        return True
    return False


def rule_property(rule) -> str:
    """Property a rule targets: 'key', falling back to the legacy 'field'."""
    if not isinstance(rule, dict):
        return ''
    name = rule.get('key') or rule.get('field')
    return name if isinstance(name, str) else ''


def resolve_rule_value(product: Dict, property_name: str):
    """
    Read the value a rule compares against, or None when absent.

    'specs.<name>' looks <name> up case-insensitively in the product's specs map
    (only the segment right after the prefix is used). Anything else reads a
    top-level property, which only counts when it is a scalar.
    """
    if property_name.startswith(SPECS_PREFIX):
        spec_key = property_name.split('.')[1].lower()
        specs = product.get('specs')
        if not isinstance(specs, dict):
            return None
        for key, value in specs.items():
            if str(key).lower() == spec_key:
                return None if _is_missing(value) else value
        return None

    value = product.get(property_name)
    if not isinstance(value, _SCALAR_TYPES) or _is_missing(value):
        return None
    return value


def to_number(value) -> Optional[float]:
    """
    Numeric coercion for gt/lt/gte/lte. Returns None when not a valid number.

    Numeric text is accepted ("256", " 12.5 ", "1e3", "0x10", "Infinity");
    booleans, empty text, NaN and Python-only spellings ("1_000", "inf") are not.
    """
    if value is None or isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, str):
        value = value.strip()
        if _RADIX_NUMBER.match(value):
            return float(int(value, 0))
        if not _DECIMAL_NUMBER.match(value):
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


# ---------------------------------------------------------------------------
# Rule evaluation
# ---------------------------------------------------------------------------

def compare(product_value, operator: str, rule_value) -> bool:
    """Apply one operator. Unknown operators fail."""
    if operator in STRING_OPERATORS:
        left = normalize(product_value).lower()
        right = normalize(rule_value).lower()
        if operator == OPERATOR_EQ:
            return left == right
        if operator == OPERATOR_NEQ:
            return left != right
        return right in left

    if operator in NUMERIC_OPERATORS:
        left = to_number(product_value)
        right = to_number(rule_value)
        if left is None or right is None:
            return False
        if operator == OPERATOR_GT:
            return left > right
        if operator == OPERATOR_LT:
            return left < right
        if operator == OPERATOR_GTE:
            return left >= right
        return left <= right

    return False


def rule_matches(product: Dict, rule) -> bool:
    """Evaluate a single rule against a product."""
    property_name = rule_property(rule)
    if not property_name:
        logger.debug("Rule without key/field fails closed: %r", rule)
        return False

    product_value = resolve_rule_value(product, property_name)
    if product_value is None:
        return False

    operator = rule.get('operator')
    if operator not in RULE_OPERATORS:
        logger.debug("Unknown rule operator %r fails closed", operator)
        return False

    rule_value = rule.get('value')
    if _is_missing(rule_value):
        logger.debug("Rule without value fails closed: %r", rule)
        return False

    return compare(product_value, operator, rule_value)


def matches(product: Dict, rules: Optional[List]) -> bool:
    """True when the product passes every rule (an empty rule set matches all)."""
    if not rules:
        return True
    return all(rule_matches(product, rule) for rule in rules)


def filter_products(products: List[Dict], rules: Optional[List]) -> List[Dict]:
    """Products passing the rule set, in catalog order."""
    return [p for p in products if matches(p, rules)]


# ---------------------------------------------------------------------------
# Section building
# ---------------------------------------------------------------------------

def parse_rules(raw) -> List:
    """
    Coerce stored filter_rules into a list.

    Section configs come from storage as a list, a JSON string, or null.
    Unparseable text yields a single malformed rule so the section fails closed
    rather than silently matching everything.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Could not parse filter_rules JSON: %r", raw[:80])
            return [{}]
    if isinstance(raw, dict):
        return [raw]
    if isinstance(raw, list):
        return raw
    return [{}]


def build_sections(
    sections: Optional[List[Dict]],
    products: List[Dict],
    limit: int = SECTION_PRODUCT_LIMIT,
) -> List[Dict]:
    """
    Hydrate configured category sections with their products.

    Steps:
        1. Fall back to DEFAULT_SECTIONS when nothing is configured
        2. Skip inactive sections, order the rest by sort_order
        3. Brand rows receive every product; product rows receive the first
           `limit` products passing their rules
        4. Drop sections that end up empty

    Returns list of section dicts with added 'products' and 'total_matches'.
    """
    configured = list(sections or [])
    if not configured:
        configured = [dict(s) for s in DEFAULT_SECTIONS]

    active = [s for s in configured if s.get('is_active', True) is not False]
    # sort_order arrives as int, float or text depending on where the config came from
    active.sort(key=lambda s: to_number(s.get('sort_order')) or 0)

    hydrated = []
    for section in active:
        rules = parse_rules(section.get('filter_rules'))
        if section.get('section_type') == SECTION_TYPE_BRAND_ROW:
            section_products = list(products)
            total = len(section_products)
        else:
            matched = filter_products(products, rules)
            total = len(matched)
            section_products = matched[:limit]

        if not section_products:
            continue

        result = dict(section)
        result['filter_rules'] = rules
        result['products'] = section_products
        result['total_matches'] = total
        hydrated.append(result)

    return hydrated
