"""
Micro-benchmark for the variant resolver.

Tests:
1. VariantIndex construction on synthetic products of growing size
2. resolve() per facet click
3. options() + is_available() per render (what the configurator calls every rerun)
4. Rule evaluation over a synthetic 10k product catalog

Usage:
    python scripts/benchmark_resolver.py
"""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
import time
import numpy as np
from variant_matcher import VariantIndex, is_available, options, pick_default, resolve
from rules_engine import filter_products

CONDITIONS = ['New', 'Open Box', 'Refurbished', 'Used']
FACETS = {
    'ram': ['8GB', '16GB', '32GB', '64GB'],
    'storage': [128, 256, 512, 1024],
    'color': ['Black', 'Silver', 'Blue', 'Gold'],
    'screen': [13.3, 14.0, 15.6, 16.0],
}


def generate_synthetic_variants(n_variants: int, seed: int = 7) -> list:
    """Generate a sparse synthetic variant set (each facet missing ~10% of the time)."""
    rng = np.random.default_rng(seed)
    variants = []
    for i in range(n_variants):
        specs = {}
        for facet, values in FACETS.items():
            if rng.random() < 0.9:
                specs[facet] = values[rng.integers(len(values))]
        variants.append({
            'id': f'v-{i:05d}',
            'condition': CONDITIONS[rng.integers(len(CONDITIONS))],
            'price': float(rng.integers(200, 3000)),
            'stock': int(rng.integers(0, 5)),
            'specs': specs,
        })
    return variants


def generate_synthetic_products(n_products: int, seed: int = 11) -> list:
    rng = np.random.default_rng(seed)
    brands = ['Apple', 'Dell', 'Lenovo', 'HP', 'Asus']
    return [
        {
            'id': f'p-{i:05d}',
            'brand': brands[rng.integers(len(brands))],
            'price': float(rng.integers(100, 4000)),
            'is_featured': bool(rng.random() < 0.2),
            'specs': {'Storage': str(FACETS['storage'][rng.integers(4)]), 'RAM': FACETS['ram'][rng.integers(4)]},
        }
        for i in range(n_products)
    ]


def benchmark_function(func, *args, **kwargs):
    """Benchmark a function and return (result, elapsed_ms)."""
    start = time.perf_counter()
    result = func(*args, **kwargs)
    end = time.perf_counter()
    elapsed_ms = (end - start) * 1000
    return result, elapsed_ms


def benchmark_index_and_resolve(n_clicks: int = 1000):
    print("\n" + "="*70)
    print("BENCHMARK: VariantIndex + resolve() per click")
    print("="*70)

    rng = np.random.default_rng(3)
    facet_keys = ['condition'] + list(FACETS)

    for n_variants in (10, 100, 1000):
        variants = generate_synthetic_variants(n_variants)
        index, index_ms = benchmark_function(VariantIndex, variants)
        selections = pick_default(index)

        start = time.perf_counter()
        for _ in range(n_clicks):
            key = facet_keys[rng.integers(len(facet_keys))]
            values = CONDITIONS if key == 'condition' else FACETS[key]
            selections, _ = resolve(key, values[rng.integers(len(values))], selections, index)
        elapsed_ms = (time.perf_counter() - start) * 1000

        print(f"\n{n_variants} variants:")
        print(f"  Index build: {index_ms:.3f}ms")
        print(f"  Per click:   {elapsed_ms * 1000 / n_clicks:.1f}μs ({n_clicks} clicks)")


def benchmark_render(n_renders: int = 500):
    print("\n" + "="*70)
    print("BENCHMARK: options() + is_available() per render")
    print("="*70)

    for n_variants in (10, 100, 1000):
        index = VariantIndex(generate_synthetic_variants(n_variants))
        selections = pick_default(index)

        start = time.perf_counter()
        for _ in range(n_renders):
            for facet, values in options(index, selections).items():
                for value in values:
                    is_available(facet, value, index, selections)
        elapsed_ms = (time.perf_counter() - start) * 1000

        print(f"\n{n_variants} variants:")
        print(f"  Per render: {elapsed_ms * 1000 / n_renders:.1f}μs ({n_renders} renders)")


def benchmark_rules():
    print("\n" + "="*70)
    print("BENCHMARK: filter_products() - 10k catalog")
    print("="*70)

    products = generate_synthetic_products(10000)
    rules = [
        {'key': 'specs.storage', 'operator': 'gte', 'value': 256},
        {'key': 'brand', 'operator': 'neq', 'value': 'HP'},
        {'key': 'price', 'operator': 'lt', 'value': 2500},
    ]

    matched, elapsed = benchmark_function(filter_products, products, rules)
    print(f"\n  Matched: {len(matched):,} / {len(products):,}")
    print(f"  Time: {elapsed:.2f}ms")
    print(f"  Throughput: {len(products) / (elapsed / 1000):.0f} products/sec")


def main():
    """Run all benchmarks."""
    print("="*70)
    print("VARIANT RESOLVER PERFORMANCE BENCHMARK")
    print("="*70)

    benchmark_index_and_resolve()
    benchmark_render()
    benchmark_rules()

    print("\n" + "="*70)
    print("BENCHMARK COMPLETE")
    print("="*70)


if __name__ == '__main__':
    main()
