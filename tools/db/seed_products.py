#!/usr/bin/env python3
"""Populate the products table with sample sustainable products.

Existing catalog rows are replaced.

Usage:
    python tools/db/seed_products.py [--json] [--db-path PATH]
"""

import argparse
import hashlib
import json
import os
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(BASE_DIR))

from tools.db.init_db import init_db  # noqa: E402
from tools.db.stores import CatalogStore  # noqa: E402
from tools.proposal.models import CatalogItem  # noqa: E402

# (name, category, unit_price, plastic_saved_per_unit, carbon_avoided_per_unit)
SEED_PRODUCTS = [
    ("Recycled Cotton Tote Bag", "Bags", 8.5, 0.3, 1.2),
    ("Stainless Steel Water Bottle", "Drinkware", 15.0, 0.5, 2.1),
    ("Bamboo Ballpoint Pen", "Stationery", 3.25, 0.05, 0.15),
    ("Recycled Paper Notebook", "Stationery", 6.0, 0.1, 0.8),
    ("Ceramic Travel Mug", "Drinkware", 12.0, 0.4, 1.5),
    ("Organic Cotton T-Shirt", "Apparel", 22.0, 0.2, 3.5),
    ("Recycled Polyester Cap", "Apparel", 14.0, 0.6, 1.8),
    ("Biodegradable Wheat Straw USB Drive (16GB)", "Electronics", 9.75, 0.15, 0.6),
    ("Portable Solar Phone Charger", "Electronics", 35.0, 0.25, 5.0),
    ("Plantable Seed Paper Card", "Stationery", 2.5, 0.02, 0.1),
    ("Bamboo Fiber Lunch Box", "Kitchen", 18.0, 0.8, 2.0),
    ("Reusable Metal Straw Set (4-pack)", "Kitchen", 7.5, 1.0, 0.5),
]


def _product_id():
    """Generate a unique product ID: PRD- + 12 hex chars."""
    raw = hashlib.sha256(os.urandom(32)).hexdigest()[:12]
    return f"PRD-{raw}"


def seed_products(db_path=None) -> dict:
    init_db(db_path)
    items = [
        CatalogItem(
            id=_product_id(), name=name, category=category, unit_price=price,
            plastic_saved_per_unit=plastic, carbon_avoided_per_unit=carbon,
        )
        for name, category, price, plastic, carbon in SEED_PRODUCTS
    ]
    count = CatalogStore(db_path).replace_all(items)
    return {
        "status": "seeded",
        "count": count,
        "products": [{"id": i.id, "name": i.name, "unit_price": i.unit_price}
                     for i in items],
    }


def main():
    parser = argparse.ArgumentParser(description="Seed the product catalog")
    parser.add_argument("--db-path", help="Override database path")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    result = seed_products(args.db_path)

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        print(f"Inserted {result['count']} products:")
        for p in result["products"]:
            print(f"  • {p['id']}  {p['name']}  (${p['unit_price']})")


if __name__ == "__main__":
    main()
