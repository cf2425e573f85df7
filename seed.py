"""
Sample catalog for local development.

    python seed.py

fills an empty database with a handful of attars and, when
``SEED_ADMIN_EMAIL`` and ``SEED_ADMIN_PASSWORD`` are set, an admin account.
"""
import logging

from pymongo.database import Database

import config
from auth import get_password_hash
from catalog import create_product
from database import create_document, get_db
from schemas import ProductCreate

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    {
        "name": "Royal Hind Oud",
        "description": "Deep resinous oud from the old agarwood forests of Assam, distilled in copper degs into a sandalwood base.",
        "short_description": "Deep forest oud from Assam, India.",
        "category": "Oud & Agarwood",
        "origin": "Assam, India",
        "sizes": [
            {"volume": "3ml", "price": 75, "stock": 30, "sku": "RHO-3"},
            {"volume": "6ml", "price": 148, "stock": 20, "sku": "RHO-6"},
            {"volume": "12ml", "price": 285, "stock": 10, "sku": "RHO-12"},
        ],
        "badge": "Bestseller",
        "tags": ["oud", "agarwood", "smoky", "woody"],
        "gender": "Unisex",
        "is_featured": True,
    },
    {
        "name": "Damask Rose Taif",
        "description": "Rosa damascena from the mountains of Taif. Each bottle takes thousands of hand-picked roses.",
        "short_description": "Rare Taif rose, fresh and honeyed.",
        "category": "Rose & Florals",
        "origin": "Taif, Saudi Arabia",
        "sizes": [
            {"volume": "3ml", "price": 38, "stock": 50, "sku": "DRT-3"},
            {"volume": "6ml", "price": 75, "stock": 35, "sku": "DRT-6"},
            {"volume": "12ml", "price": 145, "stock": 15, "sku": "DRT-12"},
        ],
        "badge": "New",
        "tags": ["rose", "floral", "honeyed"],
        "gender": "Feminine",
        "is_featured": True,
    },
    {
        "name": "Mysore Shamama",
        "description": "Forty botanicals including saffron, sandalwood and rose, aged twelve years in earthen pots in Kannauj.",
        "short_description": "A 12-year aged blend of 40+ botanicals.",
        "category": "Spice & Oriental",
        "origin": "Kannauj, India",
        "sizes": [
            {"volume": "3ml", "price": 110, "stock": 15, "sku": "MSH-3"},
            {"volume": "6ml", "price": 220, "stock": 8, "sku": "MSH-6"},
            {"volume": "12ml", "price": 420, "stock": 4, "sku": "MSH-12"},
        ],
        "badge": "Rare",
        "tags": ["shamama", "aged", "oriental"],
        "gender": "Unisex",
        "is_featured": True,
    },
    {
        "name": "Saffron Musk Gold",
        "description": "Kashmiri saffron threads over white musk. Warm, spiced and radiant.",
        "short_description": "Kashmiri saffron meets warm white musk.",
        "category": "Musk & Amber",
        "origin": "Kashmir, India",
        "sizes": [
            {"volume": "3ml", "price": 55, "stock": 40, "sku": "SMG-3"},
            {"volume": "6ml", "price": 110, "stock": 25, "sku": "SMG-6"},
            {"volume": "12ml", "price": 210, "stock": 12, "sku": "SMG-12"},
        ],
        "tags": ["saffron", "musk", "amber"],
        "gender": "Unisex",
        "is_featured": True,
    },
    {
        "name": "Blue Lotus Ceylon",
        "description": "The sacred blue lotus from the lagoons of Sri Lanka. Delicate and aquatic.",
        "short_description": "Aquatic lotus from Sri Lanka.",
        "category": "Rose & Florals",
        "origin": "Sri Lanka",
        "sizes": [
            {"volume": "3ml", "price": 30, "stock": 60, "sku": "BLC-3"},
            {"volume": "6ml", "price": 60, "stock": 40, "sku": "BLC-6"},
            {"volume": "12ml", "price": 115, "stock": 20, "sku": "BLC-12"},
        ],
        "tags": ["lotus", "aquatic", "floral"],
        "gender": "Unisex",
    },
    {
        "name": "Black Oud Cambodian",
        "description": "Dark animalic oud from Cambodian Aquilaria trees with a leather and smoke finish.",
        "short_description": "Ultra-rare Cambodian oud.",
        "category": "Oud & Agarwood",
        "origin": "Cambodia",
        "sizes": [
            {"volume": "3ml", "price": 185, "stock": 8, "sku": "BOC-3"},
            {"volume": "6ml", "price": 360, "stock": 4, "sku": "BOC-6"},
        ],
        "badge": "Rare",
        "tags": ["oud", "dark", "animalic", "collector"],
        "gender": "Masculine",
    },
]


def seed_products(db: Database) -> int:
    """Insert the sample products into an empty catalog; returns how many were added."""
    if db["product"].count_documents({}) > 0:
        return 0
    for raw in SAMPLE_PRODUCTS:
        create_product(db, ProductCreate(**raw))
    logger.info("Seeded %d products", len(SAMPLE_PRODUCTS))
    return len(SAMPLE_PRODUCTS)


def seed_admin(db: Database, email: str, password: str) -> bool:
    email = email.lower()
    if db["user"].find_one({"email": email}):
        return False
    create_document(db, "user", {
        "name": "Store Admin",
        "email": email,
        "password_hash": get_password_hash(password),
        "phone": None,
        "avatar": None,
        "role": "admin",
        "is_active": True,
        "last_login": None,
    })
    logger.info("Admin account %s created", email)
    return True


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL)
    db = get_db()
    if config.SEED_ADMIN_EMAIL and config.SEED_ADMIN_PASSWORD:
        seed_admin(db, config.SEED_ADMIN_EMAIL, config.SEED_ADMIN_PASSWORD)
    seed_products(db)
