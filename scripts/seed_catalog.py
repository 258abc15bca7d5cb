"""
Seed a development database with categories, products and an admin account.

Idempotent: rows are matched by slug, SKU or email and left alone when present.
"""
import logging
import os

from werkzeug.security import generate_password_hash

from storefront.database import Base, SessionLocal, engine
from storefront.models import Category, Product, User, UserRole

logger = logging.getLogger("seed_catalog")

CATEGORIES = [
    {"name": "Electronics", "slug": "electronics", "description": "Phones, laptops and accessories", "sort_order": 1},
    {"name": "Home", "slug": "home", "description": "Furniture and household goods", "sort_order": 2},
    {"name": "Books", "slug": "books", "description": "Printed and digital books", "sort_order": 3},
]

PRODUCTS = [
    {
        "name": "Wireless Headphones",
        "description": "Over-ear headphones with active noise cancelling",
        "price": 199.99,
        "discount_price": 149.99,
        "category": "electronics",
        "brand": "Acoustica",
        "stock": 50,
        "sku": "EL-HEAD-001",
        "is_featured": True,
        "tags": ["audio", "wireless"],
    },
    {
        "name": "USB-C Charger",
        "description": "65W fast charger with two ports",
        "price": 39.99,
        "category": "electronics",
        "brand": "Voltix",
        "stock": 200,
        "sku": "EL-CHRG-002",
        "tags": ["charging"],
    },
    {
        "name": "Desk Lamp",
        "description": "Dimmable LED desk lamp",
        "price": 29.5,
        "category": "home",
        "brand": "Lumen",
        "stock": 80,
        "sku": "HM-LAMP-001",
        "is_featured": True,
    },
    {
        "name": "Python Cookbook",
        "description": "Recipes for mastering Python 3",
        "price": 45.0,
        "category": "books",
        "brand": "Tech Press",
        "stock": 30,
        "sku": "BK-PY-001",
    },
]


def seed(session) -> None:
    categories = {}
    for data in CATEGORIES:
        category = session.query(Category).filter_by(slug=data["slug"]).first()
        if category is None:
            category = Category(**data)
            session.add(category)
            session.flush()
            logger.info("Created category %s", data["slug"])
        categories[data["slug"]] = category

    for data in PRODUCTS:
        if session.query(Product).filter_by(sku=data["sku"]).first():
            continue
        values = dict(data)
        category = categories[values.pop("category")]
        session.add(Product(categoryID=category.categoryID, images=[], specifications=[], **values))
        logger.info("Created product %s", data["sku"])

    admin_email = os.getenv("SEED_ADMIN_EMAIL", "admin@example.com").lower()
    if session.query(User).filter_by(email=admin_email).first() is None:
        admin = User(username="admin", email=admin_email, role=UserRole.ADMIN)
        admin.passwordHash = generate_password_hash(os.getenv("SEED_ADMIN_PASSWORD", "admin12345"))
        session.add(admin)
        logger.info("Created admin user %s", admin_email)

    session.commit()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        seed(session)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
