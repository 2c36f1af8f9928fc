"""
Tests for catalog parsing, cleaning, facet aggregation and the saved reference.
"""
import json

import pandas as pd
import pytest

from catalog import (
    CatalogFormatError,
    catalog_reference_exists,
    category_filters,
    clean_catalog,
    delete_catalog_reference,
    display_price,
    find_duplicate_facet_keys,
    load_catalog_reference,
    natural_sort_key,
    normalize_product_sheet,
    normalize_variant_sheet,
    parse_catalog,
    parse_sections,
    products_from_variants,
    save_catalog_reference,
)
from variant_matcher import options, pick_default


@pytest.fixture
def variants_sheet() -> pd.DataFrame:
    return pd.DataFrame({
        'SKU': ['L-1', 'L-2', 'L-3', 'P-1'],
        'Product ID': ['p1', 'p1', 'p1', 'p2'],
        'Condition': ['New', 'New', 'Used', 'New'],
        'Price': [900, 1100, 600, 499],
        'Stock': [5, 0, 2, 1],
        'RAM': ['8GB', '16GB', '8GB', None],
        'spec:Storage': [256, 512, None, 128],
    })


@pytest.fixture
def products_sheet() -> pd.DataFrame:
    return pd.DataFrame({
        'ID': ['p1', 'p2', 'p3'],
        'Name': ['MacBook Air', 'Pixel Tablet', 'Empty Box'],
        'Brand': ['Apple', 'Google', 'Acme'],
        'Category': ['laptops', 'tablets', 'laptops'],
        'Base Price': [999, 499, 10],
    })


# ---------------------------------------------------------------------------
# Sheet normalization
# ---------------------------------------------------------------------------

def test_variant_sheet_roles_and_sparse_specs(variants_sheet):
    df = normalize_variant_sheet(variants_sheet)

    assert list(df.columns) == ['id', 'product_id', 'condition', 'price', 'stock', 'specs']
    assert list(df['id']) == ['L-1', 'L-2', 'L-3', 'P-1']
    assert df.loc[0, 'specs'] == {'RAM': '8GB', 'Storage': 256}
    assert df.loc[2, 'specs'] == {'RAM': '8GB'}
    assert df.loc[3, 'specs'] == {'Storage': 128}


def test_variant_sheet_json_specs_column():
    df = normalize_variant_sheet(pd.DataFrame({
        'product_id': ['p1', 'p1'],
        'condition': ['New', 'Used'],
        'specs': ['{"ram": "8GB", "color": null}', ''],
    }))

    assert df.loc[0, 'specs'] == {'ram': '8GB'}
    assert df.loc[1, 'specs'] == {}
    assert list(df['id']) == ['variant-1', 'variant-2']


def test_variant_sheet_short_keywords_do_not_claim_facets():
    df = normalize_variant_sheet(pd.DataFrame({
        'product_id': ['p1'],
        'condition': ['New'],
        'Width': ['30cm'],
    }))

    assert df.loc[0, 'specs'] == {'Width': '30cm'}
    assert df.loc[0, 'id'] == 'variant-1'


def test_variant_sheet_requires_condition():
    with pytest.raises(CatalogFormatError, match="condition"):
        normalize_variant_sheet(pd.DataFrame({'product_id': ['p1'], 'ram': ['8GB']}))


def test_variant_sheet_requires_product_reference():
    with pytest.raises(CatalogFormatError, match="product_id"):
        normalize_variant_sheet(pd.DataFrame({'condition': ['New'], 'ram': ['8GB']}))


def test_product_sheet_roles(products_sheet):
    df = normalize_product_sheet(products_sheet)

    for role in ('id', 'name', 'brand', 'category', 'base_price', 'specs'):
        assert role in df.columns
    assert df.loc[0, 'specs'] == {}


def test_product_sheet_requires_id():
    with pytest.raises(CatalogFormatError):
        normalize_product_sheet(pd.DataFrame({'Title': ['x']}))


def test_products_from_variants(variants_sheet):
    df = products_from_variants(normalize_variant_sheet(variants_sheet))

    assert list(df['id']) == ['p1', 'p2']


# ---------------------------------------------------------------------------
# Cleaning
# ---------------------------------------------------------------------------

def test_clean_catalog_attaches_variants(products_sheet, variants_sheet):
    products, stats = clean_catalog(
        normalize_product_sheet(products_sheet), normalize_variant_sheet(variants_sheet)
    )

    by_id = {p['id']: p for p in products}
    assert [v['id'] for v in by_id['p1']['variants']] == ['L-1', 'L-2', 'L-3']
    assert by_id['p1']['price'] == 600
    assert by_id['p3']['variants'] == []
    assert by_id['p3']['price'] == 10
    assert stats['final'] == 4
    assert stats['products'] == 3
    assert stats['warnings'] == []


def test_clean_catalog_output_feeds_the_resolver(products_sheet, variants_sheet):
    products, _ = clean_catalog(
        normalize_product_sheet(products_sheet), normalize_variant_sheet(variants_sheet)
    )
    variants = products[0]['variants']

    assert pick_default(variants) == {'condition': 'New', 'RAM': '8GB', 'Storage': '256'}
    assert options(variants, {'condition': 'New'})['Storage'] == ['256', '512']


def test_clean_catalog_drops_and_clamps():
    variants_df = normalize_variant_sheet(pd.DataFrame({
        'id': ['a', 'b', 'c', 'd'],
        'product_id': ['p1', 'p1', 'p1', 'ghost'],
        'condition': ['New', None, ' ', 'New'],
        'stock': [-3, 1, 1, 1],
        'ram': ['8GB', '8GB', '8GB', '8GB'],
    }))

    products, stats = clean_catalog(products_from_variants(variants_df.iloc[:1]), variants_df)

    assert [v['id'] for v in products[0]['variants']] == ['a']
    assert products[0]['variants'][0]['stock'] == 0
    assert stats['dropped_no_condition'] == 2
    assert stats['dropped_orphan'] == 1
    assert stats['clamped_stock'] == 1
    assert len(stats['warnings']) == 3


def test_missing_stock_becomes_zero():
    variants_df = normalize_variant_sheet(pd.DataFrame({
        'product_id': ['p1'],
        'condition': ['New'],
    }))

    products, _ = clean_catalog(products_from_variants(variants_df), variants_df)

    assert products[0]['variants'][0]['stock'] == 0


def test_duplicate_facet_keys_are_flagged():
    variants = [
        {'condition': 'New', 'specs': {'RAM': '8GB', 'Storage': '256'}},
        {'condition': 'New', 'specs': {'Ram ': '16GB', 'Color': 'Black'}},
    ]

    pairs = find_duplicate_facet_keys(variants)

    assert [(a, b) for a, b, _ in pairs] == [('RAM', 'Ram ')]


def test_duplicate_facet_keys_reported_in_stats():
    variants_df = normalize_variant_sheet(pd.DataFrame({
        'product_id': ['p1', 'p1'],
        'condition': ['New', 'New'],
        'specs': ['{"RAM": "8GB"}', '{"ram": "16GB"}'],
    }))

    _, stats = clean_catalog(products_from_variants(variants_df), variants_df)

    assert any("'RAM' and 'ram'" in w for w in stats['warnings'])


def test_display_price():
    assert display_price({'variants': [{'price': 20}, {'price': 10.5}, {'price': None}]}) == 10.5
    assert display_price({'variants': [], 'base_price': 99}) == 99
    assert display_price({}) == 0


# ---------------------------------------------------------------------------
# File parsing
# ---------------------------------------------------------------------------

def test_parse_csv(tmp_path, variants_sheet):
    path = tmp_path / "variants.csv"
    variants_sheet.to_csv(path, index=False)

    parsed = parse_catalog(str(path))

    assert parsed['sections'] is None
    assert list(parsed['products']['id']) == ['p1', 'p2']
    assert parsed['variants'].loc[2, 'specs'] == {'RAM': '8GB'}


def test_parse_workbook(tmp_path, products_sheet, variants_sheet):
    path = tmp_path / "catalog.xlsx"
    sections = pd.DataFrame({
        'title': ['Apple deals'],
        'section_type': ['product_row'],
        'filter_rules': [json.dumps([{'key': 'brand', 'operator': 'eq', 'value': 'Apple'}])],
        'sort_order': [1],
        'is_active': ['yes'],
    })
    with pd.ExcelWriter(path) as writer:
        products_sheet.to_excel(writer, sheet_name='Products', index=False)
        variants_sheet.to_excel(writer, sheet_name='Variants', index=False)
        sections.to_excel(writer, sheet_name='Sections', index=False)

    parsed = parse_catalog(str(path))
    products, stats = clean_catalog(parsed['products'], parsed['variants'])
    section_rows = parse_sections(parsed['sections'])

    assert stats['products'] == 3
    assert products[0]['name'] == 'MacBook Air'
    assert section_rows[0]['title'] == 'Apple deals'
    assert section_rows[0]['is_active'] is True
    assert section_rows[0]['id'] == 'section-1'


def test_parse_workbook_without_variants_sheet(tmp_path, products_sheet):
    path = tmp_path / "catalog.xlsx"
    products_sheet.to_excel(path, sheet_name='Products', index=False)

    with pytest.raises(CatalogFormatError, match="variants"):
        parse_catalog(str(path))


def test_parse_sections_empty():
    assert parse_sections(None) == []
    assert parse_sections(pd.DataFrame()) == []


# ---------------------------------------------------------------------------
# Facet aggregation
# ---------------------------------------------------------------------------

def test_category_filters():
    products = [
        {'variants': [
            {'specs': {'Storage': '128GB', ' RAM ': '16GB'}},
            {'specs': {'Storage': '1TB', 'RAM': '8GB', 'Color': ''}},
        ]},
        {'variants': [{'specs': {'Storage': '64GB', 'RAM': None}}]},
        {'variants': []},
    ]

    assert category_filters(products) == [
        {'key': 'RAM', 'values': ['8GB', '16GB']},
        {'key': 'Storage', 'values': ['1TB', '64GB', '128GB']},
    ]


def test_natural_sort_key_orders_numbers_numerically():
    assert sorted(['128GB', '16GB', '8GB', '1TB'], key=natural_sort_key) == ['1TB', '8GB', '16GB', '128GB']


# ---------------------------------------------------------------------------
# Reference persistence
# ---------------------------------------------------------------------------

def test_reference_round_trip(tmp_path):
    directory = str(tmp_path / "ref")
    products = [{'id': 'p1', 'variants': [{'id': 'v1', 'condition': 'New', 'stock': 1, 'specs': {}}]}]
    stats = {'products': 1, 'final': 1, 'warnings': []}

    assert not catalog_reference_exists(directory)
    assert load_catalog_reference(directory) is None

    save_catalog_reference(products, stats, [{'id': 's1'}], directory=directory)

    assert catalog_reference_exists(directory)
    assert load_catalog_reference(directory) == (products, [{'id': 's1'}], stats)

    delete_catalog_reference(directory)
    assert not catalog_reference_exists(directory)
