"""
Variant Configurator — Streamlit UI

Preview how the resolver behaves on a real catalog: pick a product, click facet
values, and see which variant is resolved, what stays available, and how the
category sections / filters built from rule sets look.

Run with:
    streamlit run src/app.py
"""

import json

import streamlit as st
import pandas as pd

from variant_matcher import (
    CONDITION_KEY,
    STOCK_STATUS_IN_STOCK,
    STOCK_STATUS_OUT_OF_STOCK,
    VariantIndex,
    describe_selection,
    is_available,
    options,
    pick_default,
    resolve,
)
from rules_engine import (
    OPERATOR_EQ,
    RULE_OPERATORS,
    SECTION_PRODUCT_LIMIT,
    SECTION_TYPE_BRAND_ROW,
    build_sections,
    filter_products,
    parse_rules,
)
from catalog import (
    CatalogFormatError,
    category_filters,
    catalog_reference_exists,
    clean_catalog,
    delete_catalog_reference,
    load_catalog_reference,
    parse_catalog,
    parse_sections,
    save_catalog_reference,
)

# ---------------------------------------------------------------------------
# Page config
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="Variant Configurator",
    page_icon="🧩",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.title("🧩 Variant Configurator")
st.markdown("**Facet-by-facet variant resolution with rule-based merchandising previews**")

STATUS_BADGES = {
    STOCK_STATUS_IN_STOCK: "🟢 In Stock",
    STOCK_STATUS_OUT_OF_STOCK: "🔴 Out of Stock",
}

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
st.sidebar.header("⚙️ Settings")

section_limit = st.sidebar.number_input(
    "Products per section",
    min_value=1,
    max_value=48,
    value=SECTION_PRODUCT_LIMIT,
    help="How many products a product rail shows before 'View all'",
)
show_unavailable = st.sidebar.checkbox(
    "Show unavailable facet values",
    value=True,
    help="Render values that don't exist for the current condition as disabled buttons",
)

st.sidebar.divider()

with st.sidebar.expander("Admin: Catalog Reference"):
    if catalog_reference_exists():
        ref = load_catalog_reference()
        if ref:
            st.caption(f"Loaded {ref[2].get('products', len(ref[0])):,} products")
        if st.button("Delete Catalog Reference"):
            delete_catalog_reference()
            st.cache_data.clear()
            st.cache_resource.clear()
            st.session_state.clear()
            st.rerun()
    else:
        st.warning("No catalog reference saved")

    catalog_upload = st.file_uploader(
        "Upload catalog (.xlsx with Products/Variants sheets, or variants .csv)",
        type=["xlsx", "csv"],
        key="catalog_upload",
    )
    if catalog_upload is not None and st.button("Save Catalog Reference"):
        with st.spinner("Parsing catalog..."):
            try:
                parsed = parse_catalog(catalog_upload)
            except CatalogFormatError as e:
                st.error(f"Catalog rejected: {e}")
                st.stop()
            products_clean, stats = clean_catalog(parsed['products'], parsed['variants'])
            save_catalog_reference(products_clean, stats, parse_sections(parsed['sections']))
        st.success(f"Saved {stats['products']:,} products / {stats['final']:,} variants")
        st.cache_data.clear()
        st.cache_resource.clear()
        st.session_state.clear()
        st.rerun()

# =========================================================================
# Load catalog reference - CACHED for performance
# =========================================================================

@st.cache_data(show_spinner="Loading catalog...")
def load_catalog():
    """Load the saved catalog snapshot."""
    ref = load_catalog_reference()
    if ref is None:
        return None
    products_ref, sections_ref, stats_ref = ref
    return {'products': products_ref, 'sections': sections_ref, 'stats': stats_ref}


@st.cache_resource
def get_variant_index(product_id: str, _variants: list) -> VariantIndex:
    """One VariantIndex per product load (keyed on product id)."""
    return VariantIndex(_variants)


catalog = load_catalog()

if catalog is None:
    st.error("No catalog loaded. Use the Admin panel in the sidebar to upload a catalog.")
    st.stop()

products = catalog['products']
stats = catalog['stats']

st.success(
    f"Catalog: **{len(products):,}** products, **{stats.get('final', 0):,}** variants"
)
if stats.get('warnings'):
    with st.expander(f"⚠️ {len(stats['warnings'])} data quality warning(s)"):
        for warning in stats['warnings']:
            st.markdown(f"- {warning}")

tab1, tab2, tab3 = st.tabs(["🛒 Configurator", "🧱 Sections", "🔎 Filters"])

# =========================================================================
# TAB 1: CONFIGURATOR
# =========================================================================
with tab1:
    product_labels = {f"{p.get('name') or p['id']} ({p['id']})": p for p in products}
    label = st.selectbox("Product", list(product_labels.keys()))
    product = product_labels[label]
    index = get_variant_index(str(product['id']), product.get('variants') or [])

    state_key = f"selections::{product['id']}"
    if state_key not in st.session_state:
        st.session_state[state_key] = pick_default(index)
    selections = st.session_state[state_key]

    def on_select(key, value):
        new_selections, _ = resolve(key, value, st.session_state[state_key], index)
        st.session_state[state_key] = new_selections

    summary = describe_selection(product, index, selections)

    left, right = st.columns([2, 1])

    with left:
        st.subheader(product.get('name') or str(product['id']))
        if product.get('brand'):
            st.caption(product['brand'])

        if len(index) == 0:
            st.warning("This product has no variants and cannot be purchased.")

        facet_options = options(index, selections)
        for facet, values in facet_options.items():
            st.markdown(f"**{facet.replace('_', ' ').title()}**")
            cols = st.columns(max(len(values), 1))
            for col, value in zip(cols, values):
                available = is_available(facet, value, index, selections)
                if not available and not show_unavailable:
                    continue
                selected = selections.get(facet) == value
                col.button(
                    value,
                    key=f"{product['id']}::{facet}::{value}",
                    type="primary" if selected else "secondary",
                    disabled=not available,
                    on_click=on_select,
                    args=(facet, value),
                    use_container_width=True,
                )

    with right:
        st.metric("Price", f"{summary['price']:,.2f}")
        badge = STATUS_BADGES.get(summary['status'])
        if badge:
            st.markdown(badge)
        if summary['fulfillment']:
            st.caption(summary['fulfillment'])
        if summary['combination_unavailable']:
            st.error("This specific combination is not available.")
        st.button("Add to Cart", disabled=not summary['purchasable'], key=f"cart::{product['id']}")

        with st.expander("Resolved variant"):
            st.json(summary['variant'] or {})
        with st.expander("Selection"):
            st.json(selections)

    with st.expander(f"All {len(index)} variant(s)"):
        rows = [
            {'id': v.get('id'), CONDITION_KEY: v.get(CONDITION_KEY), 'price': v.get('price'),
             'stock': v.get('stock'), **(v.get('specs') or {})}
            for v in index
        ]
        st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)

# =========================================================================
# TAB 2: SECTIONS
# =========================================================================
with tab2:
    categories = sorted({str(p.get('category')) for p in products if p.get('category')})
    category = st.selectbox("Category", ["(all)"] + categories)
    category_products = [
        p for p in products if category == "(all)" or str(p.get('category')) == category
    ]

    configured = [
        s for s in catalog['sections']
        if category == "(all)" or str(s.get('category_slug', category)) == category
    ]
    sections_json = st.text_area(
        "Sections (JSON)",
        value=json.dumps(configured, indent=2, default=str),
        height=220,
        help="Edit filter_rules to preview rails. Operators: " + ", ".join(sorted(RULE_OPERATORS)),
    )
    try:
        edited_sections = json.loads(sections_json) if sections_json.strip() else []
    except json.JSONDecodeError as e:
        st.error(f"Invalid JSON: {e}")
        edited_sections = configured

    hydrated = build_sections(edited_sections, category_products, limit=int(section_limit))
    if not hydrated:
        st.info("No sections have matching products.")

    for section in hydrated:
        st.markdown(f"### {section.get('title', section['id'])}")
        if section.get('section_type') == SECTION_TYPE_BRAND_ROW:
            brands = sorted({str(p.get('brand')) for p in section['products'] if p.get('brand')})
            st.caption(" · ".join(brands) or "No brands")
            continue
        st.caption(f"Showing {len(section['products'])} of {section['total_matches']} matching products")
        st.dataframe(
            pd.DataFrame([
                {'id': p['id'], 'name': p.get('name'), 'brand': p.get('brand'), 'price': p.get('price')}
                for p in section['products']
            ]),
            use_container_width=True,
            hide_index=True,
        )
        if section['filter_rules']:
            st.code(json.dumps(section['filter_rules'], indent=2, default=str), language="json")

# =========================================================================
# TAB 3: FILTERS
# =========================================================================
with tab3:
    filters = category_filters(category_products)
    if not filters:
        st.info("No facets found for this category.")

    filter_col, result_col = st.columns([1, 2])
    rules = []
    with filter_col:
        for facet in filters:
            chosen = st.selectbox(facet['key'], ["(any)"] + facet['values'], key=f"filter::{facet['key']}")
            if chosen != "(any)":
                rules.append({'key': f"specs.{facet['key']}", 'operator': OPERATOR_EQ, 'value': chosen})

    with result_col:
        # Facet filters target variant specs; a product passes if any of its variants does
        matched = [
            p for p in category_products
            if not rules or any(filter_products(p.get('variants') or [], parse_rules(rules)))
        ]
        st.markdown(f"**{len(matched):,}** product(s) match")
        st.dataframe(
            pd.DataFrame([
                {'id': p['id'], 'name': p.get('name'), 'brand': p.get('brand'), 'price': p.get('price')}
                for p in matched
            ]),
            use_container_width=True,
            hide_index=True,
        )

# ---------------------------------------------------------------------------
# Footer
# ---------------------------------------------------------------------------
st.divider()
st.caption("Variant Configurator — resolution runs locally on the loaded catalog snapshot.")
