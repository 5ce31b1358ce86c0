#!/usr/bin/env python3
"""
Seed categories, products and an admin account.

Products come from a JSON file (a list, or an object with an ``items`` list)
when ``--file`` is given, otherwise from the small demo catalogue below.
Existing SKUs are skipped, so the script can be re-run safely.

Usage:
    python scripts/seed_products.py
    python scripts/seed_products.py --file catalogue.json --admin-email admin@example.com
"""
import argparse
import json
import os
import sys

from kaimono.config import settings
from kaimono.db import Database
from kaimono.errors import ShopError
from kaimono.repositories.product_repo import ProductRepository
from kaimono.services.catalogue_service import CategoryService, ProductService
from kaimono.services.user_service import UserService

DEMO_CATEGORIES = [
    {"name": "食品", "slug": "food"},
    {"name": "飲料", "slug": "drinks"},
    {"name": "雑貨", "slug": "goods"},
]

DEMO_PRODUCTS = [
    {"sku": "TEA-001", "name": "煎茶 100g", "price": 1200, "stock_quantity": 40, "categories": ["drinks"]},
    {"sku": "TEA-002", "name": "ほうじ茶 200g", "price": 1800, "stock_quantity": 25, "categories": ["drinks"]},
    {"sku": "COF-001", "name": "ドリップコーヒー 10袋", "price": 980, "stock_quantity": 60, "categories": ["drinks"]},
    {"sku": "SNK-001", "name": "せんべい詰め合わせ", "price": 2400, "stock_quantity": 15, "categories": ["food"]},
    {"sku": "SNK-002", "name": "抹茶クッキー", "price": 750, "stock_quantity": 3, "categories": ["food"]},
    {"sku": "GDS-001", "name": "手ぬぐい", "price": 1500, "stock_quantity": 0, "categories": ["goods"]},
]


def _normalize_entry(entry):
    """Accept a few key spellings used by exported catalogues."""
    sku = entry.get("sku") or entry.get("id") or entry.get("productId")
    price = entry.get("price", entry.get("amount", 0))
    try:
        price = int(round(float(price)))
    except (TypeError, ValueError):
        price = 0
    try:
        stock = int(entry.get("stock_quantity", entry.get("stock", 0)) or 0)
    except (TypeError, ValueError):
        stock = 0
    image = entry.get("main_image_url") or entry.get("image")
    if not image:
        imgs = entry.get("images") or []
        image = imgs[0] if isinstance(imgs, (list, tuple)) and imgs else None
    return {
        "sku": str(sku) if sku else None,
        "name": entry.get("name") or entry.get("title") or "",
        "description": entry.get("description") or "",
        "price": price,
        "stock_quantity": stock,
        "main_image_url": image,
        "categories": entry.get("categories") or [],
    }


def _load(path):
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("items") if isinstance(data.get("items"), list) else list(data.values())
    return [_normalize_entry(e) for e in data or []]


def seed(database: Database, products, admin_email=None, admin_password=None):
    db = database.session()
    try:
        categories = CategoryService(db)
        by_slug = {c.slug: c for c in categories.list(include_inactive=True)}
        for c in DEMO_CATEGORIES:
            if c["slug"] not in by_slug:
                by_slug[c["slug"]] = categories.create(c)

        repo = ProductRepository(db)
        svc = ProductService(db)
        created = 0
        for entry in products:
            if not entry.get("sku") or repo.get_by_sku(entry["sku"]):
                continue
            slugs = entry.pop("categories", [])
            entry["category_ids"] = [by_slug[s].id for s in slugs if s in by_slug]
            svc.create(entry)
            created += 1
        print("Seeded products:", created)

        if admin_email:
            users = UserService(db)
            if users.by_email(admin_email):
                print("Admin already exists:", admin_email)
            else:
                users.register({"email": admin_email, "password": admin_password, "username": "admin"}, role="admin")
                print("Created admin:", admin_email)
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", "-f", help="Path to a product JSON file")
    parser.add_argument("--database-url", default=settings.DATABASE_URL)
    parser.add_argument("--admin-email", default=os.environ.get("SEED_ADMIN_EMAIL"))
    parser.add_argument("--admin-password", default=os.environ.get("SEED_ADMIN_PASSWORD", "admin12345"))
    args = parser.parse_args()

    if args.file and not os.path.exists(args.file):
        print("File not found:", args.file)
        sys.exit(1)

    database = Database(args.database_url)
    database.init_db()
    source = _load(args.file) if args.file else [dict(p) for p in DEMO_PRODUCTS]
    try:
        seed(database, source, args.admin_email, args.admin_password)
    except ShopError as e:
        print("Seeding failed:", e.message)
        sys.exit(1)
