"""
Pytest configuration and shared fixtures for the variant resolver tests.
"""
import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))


@pytest.fixture
def laptop_variants() -> list:
    """New 8GB in stock, New 16GB sold out, Used 8GB in stock."""
    return [
        {'id': 'v1', 'product_id': 'p1', 'condition': 'New', 'price': 900, 'stock': 5, 'specs': {'ram': '8GB'}},
        {'id': 'v2', 'product_id': 'p1', 'condition': 'New', 'price': 1100, 'stock': 0, 'specs': {'ram': '16GB'}},
        {'id': 'v3', 'product_id': 'p1', 'condition': 'Used', 'price': 600, 'stock': 2, 'specs': {'ram': '8GB'}},
    ]


@pytest.fixture
def phone_variants() -> list:
    """Two facets (storage, color), sparse specs, one refurbished unit."""
    return [
        {'id': 'a', 'condition': 'New', 'price': 999, 'stock': 3,
         'specs': {'storage': 128, 'color': 'Black'}},
        {'id': 'b', 'condition': 'New', 'price': 1099, 'stock': 0,
         'specs': {'storage': 256, 'color': 'Black'}},
        {'id': 'c', 'condition': 'New', 'price': 1099, 'stock': 4,
         'specs': {'storage': 256, 'color': 'White'}},
        {'id': 'd', 'condition': 'New', 'price': 999, 'stock': 1,
         'specs': {'storage': 128, 'color': 'White'}},
        {'id': 'e', 'condition': 'Refurbished', 'price': 700, 'stock': 6,
         'specs': {'storage': 512}},
    ]


@pytest.fixture
def catalog_products() -> list:
    return [
        {'id': 'p1', 'name': 'MacBook Air', 'brand': 'Apple', 'category': 'laptops', 'price': 900,
         'is_featured': True, 'specs': {'Storage': '256', 'RAM': '8GB'}},
        {'id': 'p2', 'name': 'ThinkPad X1', 'brand': 'Lenovo', 'category': 'laptops', 'price': 1200,
         'is_featured': False, 'specs': {'storage': 512, 'RAM': '16GB'}},
        {'id': 'p3', 'name': 'Chromebook', 'brand': 'Acer', 'category': 'laptops', 'price': 300,
         'is_featured': True, 'specs': {'Storage': '64GB'}},
        {'id': 'p4', 'name': 'Pixel Tablet', 'brand': 'Google', 'category': 'tablets', 'price': 499,
         'specs': {}},
    ]
