"""
Catalog loading, cleaning and facet aggregation.

Turns an uploaded catalog (Excel workbook or CSV) into the plain product /
variant records the resolver and rule engine consume.

Workbook layout:
    - "Products" sheet: id, name, brand, category, base_price, ... (one row per product)
    - "Variants" sheet: id, product_id, condition, price, stock + facet columns
    - optional "Sections" sheet: title, section_type, filter_rules (JSON), sort_order, is_active

A CSV upload is treated as a Variants sheet; products are synthesized from product_id.

Variant specs are either a JSON "specs" column, or every column that is not a
known role (a "spec:" prefix on the header is stripped). Empty cells are skipped,
so specs stay sparse exactly as entered.

Cleaning (reported in the stats dict, like any data-quality issue):
    - Variants with no condition are dropped (condition is the mandatory facet)
    - Variants pointing at an unknown product are dropped
    - Negative stock is clamped to 0, missing stock becomes 0
    - Near-duplicate facet keys within a product ("RAM" vs "Ram ") are flagged
"""

import os
import re
import json
import logging
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from rapidfuzz import fuzz

from variant_matcher import CONDITION_KEY, get_specs, normalize

logger = logging.getLogger(__name__)


class CatalogFormatError(ValueError):
    """The uploaded catalog is missing something the loader cannot infer."""


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
FACET_KEY_SIMILARITY = 90   # rapidfuzz ratio above which two facet keys look like one

SPEC_COLUMN_PREFIX = "spec:"

# Sheet detection keywords (checked in this order)
VARIANT_SHEET_KEYWORDS = ['variant', 'sku']
SECTION_SHEET_KEYWORDS = ['section', 'layout', 'rail']
PRODUCT_SHEET_KEYWORDS = ['product', 'catalog']

# Column role keywords: exact header match first, then substring match
VARIANT_ID_KEYWORDS = ['variant_id', 'sku', 'id']
PRODUCT_REF_KEYWORDS = ['product_id', 'product', 'parent_id', 'parent']
CONDITION_KEYWORDS = ['condition', 'grade']
PRICE_KEYWORDS = ['price', 'unit_price', 'amount']
STOCK_KEYWORDS = ['stock', 'quantity', 'qty', 'inventory']
SPECS_KEYWORDS = ['specs', 'specifications', 'attributes']

PRODUCT_ID_KEYWORDS = ['id', 'product_id']
NAME_KEYWORDS = ['name', 'title', 'product_name']
BRAND_KEYWORDS = ['brand', 'manufacturer', 'make']
CATEGORY_KEYWORDS = ['category', 'product_type', 'type']
SUBSTRING_KEYWORD_MIN_LEN = 5
BASE_PRICE_KEYWORDS = ['base_price', 'price']

# Headers never treated as facets even if unclaimed by a role
NON_FACET_KEYWORDS = ['original_price', 'image', 'images', 'created_at', 'updated_at', 'unnamed']

CATALOG_REFERENCE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "catalog_reference")
CATALOG_FILE_NAME = "catalog.json"
CATALOG_META_NAME = "catalog_meta.json"


# ---------------------------------------------------------------------------
# Column detection
# ---------------------------------------------------------------------------

def _clean_header(col) -> str:
    return re.sub(r'[\s\-]+', '_', str(col).strip().lower())


def _detect_column(columns: List[str], keywords: List[str], taken=()) -> Optional[str]:
    """
    Find the column for a role.

    Exact (cleaned) header matches win over substring matches so "product_id"
    is never mistaken for the variant "id" column. Short keywords ("id", "sku",
    "qty") only match exactly, otherwise a facet like "width" would claim "id".
    """
    available = [c for c in columns if c not in taken]
    for kw in keywords:
        for col in available:
            if _clean_header(col) == kw:
                return col
    for kw in keywords:
        if len(kw) < SUBSTRING_KEYWORD_MIN_LEN:
            continue
        for col in available:
            if kw in _clean_header(col):
                return col
    return None


def _detect_variant_columns(columns: List[str]) -> Dict[str, Optional[str]]:
    """Map variant roles to sheet columns. Order matters: ids are claimed first."""
    taken = []
    col_map = {}
    for role, keywords in [
        ('product_id', PRODUCT_REF_KEYWORDS),
        ('id', VARIANT_ID_KEYWORDS),
        ('condition', CONDITION_KEYWORDS),
        ('stock', STOCK_KEYWORDS),
        ('price', PRICE_KEYWORDS),
        ('specs', SPECS_KEYWORDS),
    ]:
        col = _detect_column(columns, keywords, taken)
        # A bare "product" header is a product reference, but "product_name" is not
        if role == 'product_id' and col is not None and 'name' in _clean_header(col):
            col = None
        col_map[role] = col
        if col is not None:
            taken.append(col)
    return col_map


def _detect_product_columns(columns: List[str]) -> Dict[str, Optional[str]]:
    taken = []
    col_map = {}
    for role, keywords in [
        ('id', PRODUCT_ID_KEYWORDS),
        ('base_price', BASE_PRICE_KEYWORDS),
        ('name', NAME_KEYWORDS),
        ('brand', BRAND_KEYWORDS),
        ('category', CATEGORY_KEYWORDS),
        ('specs', SPECS_KEYWORDS),
    ]:
        col = _detect_column(columns, keywords, taken)
        col_map[role] = col
        if col is not None:
            taken.append(col)
    return col_map


def _is_facet_column(col: str) -> bool:
    cleaned = _clean_header(col)
    if cleaned.startswith(SPEC_COLUMN_PREFIX):
        return True
    return not any(kw in cleaned for kw in NON_FACET_KEYWORDS)


def _facet_name(col: str) -> str:
    name = str(col).strip()
    if name.lower().startswith(SPEC_COLUMN_PREFIX):
        name = name[len(SPEC_COLUMN_PREFIX):].strip()
    return name


# ---------------------------------------------------------------------------
# Cell value helpers
# ---------------------------------------------------------------------------

def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _to_python(value):
    """Unwrap numpy scalars; integral floats (pandas widens sparse int columns) become ints."""
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return value.strip()
    return value


def _parse_specs_cell(value) -> Dict:
    """A JSON specs cell -> dict. Blank or invalid cells yield {}."""
    if isinstance(value, dict):
        return {k: v for k, v in value.items() if not _is_empty(v)}
    if _is_empty(value):
        return {}
    try:
        parsed = json.loads(str(value))
    except json.JSONDecodeError:
        logger.warning("Ignoring unparseable specs cell: %r", str(value)[:80])
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {k: v for k, v in parsed.items() if not _is_empty(v)}


def _to_float(value) -> Optional[float]:
    if _is_empty(value) or isinstance(value, (bool, np.bool_)):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Sheet normalization
# ---------------------------------------------------------------------------

def normalize_variant_sheet(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename detected role columns and fold facet columns into a 'specs' dict.

    Returns DataFrame with columns: id, product_id, condition, price, stock, specs
    """
    columns = [str(c) for c in df.columns]
    df = df.copy()
    df.columns = columns
    col_map = _detect_variant_columns(columns)

    missing = [role for role in ('product_id', 'condition') if col_map[role] is None]
    if missing:
        raise CatalogFormatError(
            f"Variant sheet has no {' / '.join(missing)} column (found: {', '.join(columns)})"
        )

    role_cols = {c for c in col_map.values() if c is not None}
    facet_cols = [c for c in columns if c not in role_cols and _is_facet_column(c)]

    records = []
    for position, row in enumerate(df.to_dict('records')):
        if col_map['specs'] is not None:
            specs = _parse_specs_cell(row.get(col_map['specs']))
        else:
            specs = {}
        for col in facet_cols:
            value = row.get(col)
            if not _is_empty(value):
                specs[_facet_name(col)] = value
        specs = {k: _to_python(v) for k, v in specs.items()}

        variant_id = row.get(col_map['id']) if col_map['id'] else None
        records.append({
            'id': _to_python(variant_id) if not _is_empty(variant_id) else f"variant-{position + 1}",
            'product_id': row.get(col_map['product_id']),
            'condition': row.get(col_map['condition']),
            'price': row.get(col_map['price']) if col_map['price'] else None,
            'stock': row.get(col_map['stock']) if col_map['stock'] else None,
            'specs': specs,
        })

    return pd.DataFrame(records, columns=['id', 'product_id', 'condition', 'price', 'stock', 'specs'])


def normalize_product_sheet(df: pd.DataFrame) -> pd.DataFrame:
    """Rename detected product role columns; extra scalar columns are kept as-is."""
    columns = [str(c) for c in df.columns]
    df = df.copy()
    df.columns = columns
    col_map = _detect_product_columns(columns)

    if col_map['id'] is None:
        raise CatalogFormatError(f"Product sheet has no id column (found: {', '.join(columns)})")

    rename = {col: role for role, col in col_map.items() if col is not None}
    df = df.rename(columns=rename)
    if 'specs' in df.columns:
        df['specs'] = df['specs'].apply(_parse_specs_cell)
    else:
        df['specs'] = [{} for _ in range(len(df))]
    for role in ('name', 'brand', 'category', 'base_price'):
        if role not in df.columns:
            df[role] = None
    return df


def products_from_variants(variants_df: pd.DataFrame) -> pd.DataFrame:
    """Synthesize one product row per product_id (CSV uploads carry no product sheet)."""
    ids = []
    for pid in variants_df['product_id']:
        if not _is_empty(pid) and _to_python(pid) not in ids:
            ids.append(_to_python(pid))
    return pd.DataFrame({
        'id': ids,
        'name': [str(pid) for pid in ids],
        'brand': None,
        'category': None,
        'base_price': None,
        'specs': [{} for _ in ids],
    })


def _find_sheet(sheet_names: List[str], keywords: List[str], exclude=()) -> Optional[str]:
    for kw in keywords:
        for name in sheet_names:
            if name in exclude:
                continue
            if kw in name.lower():
                return name
    return None


def parse_catalog(file) -> Dict[str, Optional[pd.DataFrame]]:
    """
    Parse an uploaded catalog (Excel workbook or CSV).

    Returns dict:
        'products': normalized product DataFrame
        'variants': normalized variant DataFrame
        'sections': raw sections DataFrame, or None when the workbook has none

    Raises CatalogFormatError when the variant sheet or a required column is missing.
    """
    file_name = getattr(file, 'name', file if isinstance(file, str) else '')
    is_csv = str(file_name).lower().endswith('.csv')

    if is_csv:
        variants_df = normalize_variant_sheet(pd.read_csv(file))
        return {
            'products': products_from_variants(variants_df),
            'variants': variants_df,
            'sections': None,
        }

    xls = pd.ExcelFile(file)
    sheet_names = list(xls.sheet_names)

    variant_sheet = _find_sheet(sheet_names, VARIANT_SHEET_KEYWORDS)
    if variant_sheet is None:
        raise CatalogFormatError(f"No variants sheet found (sheets: {', '.join(sheet_names)})")
    section_sheet = _find_sheet(sheet_names, SECTION_SHEET_KEYWORDS, exclude=(variant_sheet,))
    product_sheet = _find_sheet(
        sheet_names, PRODUCT_SHEET_KEYWORDS, exclude=(variant_sheet, section_sheet)
    )

    variants_df = normalize_variant_sheet(pd.read_excel(xls, sheet_name=variant_sheet))
    if product_sheet is not None:
        products_df = normalize_product_sheet(pd.read_excel(xls, sheet_name=product_sheet))
    else:
        products_df = products_from_variants(variants_df)
    sections_df = pd.read_excel(xls, sheet_name=section_sheet) if section_sheet else None

    return {'products': products_df, 'variants': variants_df, 'sections': sections_df}


# ---------------------------------------------------------------------------
# Cleaning
# ---------------------------------------------------------------------------

def display_price(product: Dict) -> float:
    """Starting price shown on cards: lowest variant price, else base_price, else 0."""
    prices = []
    for variant in product.get('variants') or []:
        price = _to_float(variant.get('price'))
        if price is not None:
            prices.append(price)
    if prices:
        return min(prices)
    base = _to_float(product.get('base_price'))
    return base if base is not None else 0.0


def find_duplicate_facet_keys(
    variants: List[Dict],
    threshold: int = FACET_KEY_SIMILARITY,
) -> List[Tuple[str, str, float]]:
    """
    Facet keys within one product that are probably the same facet typed twice.

    Keys are compared lowercased and stripped with rapidfuzz ratio.
    Returns list of (key_a, key_b, score), key_a seen first.
    """
    keys: List[str] = []
    for variant in variants:
        for key in get_specs(variant):
            if key not in keys:
                keys.append(key)

    pairs = []
    for i, key_a in enumerate(keys):
        for key_b in keys[i + 1:]:
            score = fuzz.ratio(str(key_a).strip().lower(), str(key_b).strip().lower())
            if score >= threshold:
                pairs.append((key_a, key_b, score))
    return pairs


def clean_catalog(
    products_df: pd.DataFrame,
    variants_df: pd.DataFrame,
) -> Tuple[List[Dict], Dict]:
    """
    Validate variants and attach them to their products.

    Returns:
        - list of product dicts, each with 'variants' (catalog order) and 'price'
        - stats dict: original, dropped_no_condition, dropped_orphan,
          clamped_stock, final, products, warnings
    """
    warnings = []
    original_count = len(variants_df)

    products = []
    by_id: Dict[str, Dict] = {}
    for row in products_df.to_dict('records'):
        product = {
            k: (None if _is_empty(v) else _to_python(v))
            for k, v in row.items() if k != 'specs'
        }
        product['specs'] = _parse_specs_cell(row.get('specs'))
        product['variants'] = []
        key = normalize(product.get('id'))
        if not key or key in by_id:
            continue
        by_id[key] = product
        products.append(product)

    dropped_no_condition = 0
    dropped_orphan = 0
    clamped_stock = 0

    for row in variants_df.to_dict('records'):
        condition = row.get(CONDITION_KEY)
        if _is_empty(condition):
            dropped_no_condition += 1
            continue

        product = by_id.get(normalize(_to_python(row.get('product_id'))))
        if product is None:
            dropped_orphan += 1
            continue

        stock = _to_float(row.get('stock'))
        if stock is None:
            stock = 0
        if stock < 0:
            clamped_stock += 1
            stock = 0

        product['variants'].append({
            'id': _to_python(row.get('id')),
            'product_id': product['id'],
            CONDITION_KEY: str(_to_python(condition)),
            'price': _to_float(row.get('price')),
            'stock': int(stock),
            'specs': {k: _to_python(v) for k, v in (row.get('specs') or {}).items()},
        })

    if dropped_no_condition:
        warnings.append(f"Dropped {dropped_no_condition} variant(s) with no condition")
    if dropped_orphan:
        warnings.append(f"Dropped {dropped_orphan} variant(s) referencing unknown products")
    if clamped_stock:
        warnings.append(f"Clamped negative stock to 0 on {clamped_stock} variant(s)")

    for product in products:
        product['price'] = display_price(product)
        for key_a, key_b, score in find_duplicate_facet_keys(product['variants']):
            warnings.append(
                f"Product {product['id']}: facet keys '{key_a}' and '{key_b}' look like duplicates ({score:.0f}%)"
            )

    final_count = sum(len(p['variants']) for p in products)
    stats = {
        'original': original_count,
        'dropped_no_condition': dropped_no_condition,
        'dropped_orphan': dropped_orphan,
        'clamped_stock': clamped_stock,
        'final': final_count,
        'products': len(products),
        'warnings': warnings,
    }

    logger.info(
        "Catalog cleaned: %d product(s), %d/%d variant(s) kept",
        len(products), final_count, original_count,
    )
    for warning in warnings:
        logger.warning(warning)

    return products, stats


def parse_sections(sections_df: Optional[pd.DataFrame]) -> List[Dict]:
    """Section rows -> dicts; filter_rules stays raw (rules_engine.parse_rules decodes it)."""
    if sections_df is None or len(sections_df) == 0:
        return []
    sections = []
    for position, row in enumerate(sections_df.to_dict('records')):
        section = {str(k).strip(): (None if _is_empty(v) else _to_python(v)) for k, v in row.items()}
        section.setdefault('id', f"section-{position + 1}")
        if section.get('id') is None:
            section['id'] = f"section-{position + 1}"
        active = section.get('is_active')
        if isinstance(active, str):
            section['is_active'] = active.strip().lower() not in ('false', 'no', '0')
        sections.append(section)
    return sections


# ---------------------------------------------------------------------------
# Facet aggregation (category filter sidebar)
# ---------------------------------------------------------------------------

def natural_sort_key(text: str):
    """Numeric-aware, case-insensitive sort key: '8GB' < '16GB' < '128GB'."""
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r'(\d+)', text)]


def category_filters(products: List[Dict]) -> List[Dict]:
    """
    Aggregate every variant facet across a category's products.

    Keys and values are trimmed, empty values skipped, values natural-sorted.

    Returns list of {'key': facet, 'values': [...]} sorted by key.
    """
    stats: Dict[str, set] = {}
    for product in products:
        for variant in product.get('variants') or []:
            for key, value in get_specs(variant).items():
                clean_value = normalize(value).strip()
                if not clean_value:
                    continue
                clean_key = str(key).strip()
                stats.setdefault(clean_key, set()).add(clean_value)

    filters = [
        {'key': key, 'values': sorted(values, key=natural_sort_key)}
        for key, values in stats.items()
    ]
    return sorted(filters, key=lambda f: natural_sort_key(f['key']))


# ---------------------------------------------------------------------------
# Catalog reference persistence — upload once, reuse across app restarts
# ---------------------------------------------------------------------------

def _reference_paths(directory: Optional[str]) -> Tuple[str, str]:
    directory = directory or CATALOG_REFERENCE_DIR
    return (
        os.path.join(directory, CATALOG_FILE_NAME),
        os.path.join(directory, CATALOG_META_NAME),
    )


def save_catalog_reference(
    products: List[Dict],
    stats: Dict,
    sections: Optional[List[Dict]] = None,
    directory: Optional[str] = None,
) -> None:
    """Save the cleaned catalog snapshot to disk."""
    data_path, meta_path = _reference_paths(directory)
    os.makedirs(os.path.dirname(data_path), exist_ok=True)
    with open(data_path, "w", encoding="utf-8") as f:
        json.dump({'products': products, 'sections': sections or []}, f, indent=2, default=str)
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(stats, f, indent=2, default=str)


def load_catalog_reference(directory: Optional[str] = None) -> Optional[Tuple[List[Dict], List[Dict], Dict]]:
    """Load a saved snapshot as (products, sections, stats). Returns None if not found."""
    data_path, meta_path = _reference_paths(directory)
    if not os.path.exists(data_path) or not os.path.exists(meta_path):
        return None
    with open(data_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    with open(meta_path, "r", encoding="utf-8") as f:
        stats = json.load(f)
    return data.get('products', []), data.get('sections', []), stats


def catalog_reference_exists(directory: Optional[str] = None) -> bool:
    data_path, meta_path = _reference_paths(directory)
    return os.path.exists(data_path) and os.path.exists(meta_path)


def delete_catalog_reference(directory: Optional[str] = None) -> None:
    for path in _reference_paths(directory):
        if os.path.exists(path):
            os.remove(path)
