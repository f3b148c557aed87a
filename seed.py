"""Sample catalog for a fresh store. Safe to run repeatedly."""
import logging
from typing import Dict

from database import collection
from storage import create_category, create_product, get_category_by_slug

logger = logging.getLogger(__name__)

CATEGORIES = [
    {"slug": "feeding", "name": "Feeding", "description": "Bottles, bibs and high chairs", "display_order": 1},
    {"slug": "nursery", "name": "Nursery", "description": "Cribs, bedding and decor", "display_order": 2},
    {"slug": "clothing", "name": "Clothing", "description": "Organic onesies and sleepwear", "display_order": 3},
    {"slug": "toys", "name": "Toys", "description": "Safe play for little hands", "display_order": 4},
    {"slug": "bath", "name": "Bath & Care", "description": "Gentle bath time essentials", "display_order": 5},
]

PRODUCTS = [
    {
        "name": "Anti-Colic Glass Bottle Set", "category": "feeding", "price": "34.99", "stock_quantity": 40,
        "description": "Set of three borosilicate bottles with slow-flow nipples.",
        "featured": True, "bestseller": True, "safety_certifications": ["BPA-Free", "FDA Approved"], "age_range": "0-12 months",
    },
    {
        "name": "Silicone Suction Plate", "category": "feeding", "price": "14.50", "stock_quantity": 8,
        "description": "Stays put on the high chair tray.",
        "safety_certifications": ["BPA-Free"], "age_range": "6 months+",
    },
    {
        "name": "Convertible Wooden Crib", "category": "nursery", "price": "329.00", "stock_quantity": 5,
        "description": "Solid pine crib that converts to a toddler bed.",
        "featured": True, "safety_certifications": ["JPMA Certified", "GREENGUARD Gold"], "age_range": "0-5 years",
    },
    {
        "name": "Organic Cotton Swaddle Blankets", "category": "nursery", "price": "29.99", "stock_quantity": 60,
        "description": "Breathable muslin swaddles, pack of four.",
        "bestseller": True, "safety_certifications": ["GOTS Organic", "OEKO-TEX"], "age_range": "0-6 months",
    },
    {
        "name": "Zip-Up Sleep Romper", "category": "clothing", "price": "19.99", "stock_quantity": 0,
        "description": "Two-way zipper for easy night changes.",
        "safety_certifications": ["OEKO-TEX"], "age_range": "3-24 months",
    },
    {
        "name": "Stacking Rainbow Rings", "category": "toys", "price": "24.00", "stock_quantity": 25,
        "description": "Hand-painted beech wood with water-based dyes.",
        "featured": True, "safety_certifications": ["ASTM F963", "CE"], "age_range": "12 months+",
    },
    {
        "name": "Tear-Free Baby Wash", "category": "bath", "price": "11.99", "stock_quantity": 120,
        "description": "Fragrance-free wash for sensitive skin.",
        "bestseller": True, "safety_certifications": ["Dermatologist Tested"], "age_range": "0 months+",
    },
]


def seed_catalog() -> Dict[str, int]:
    created = {"categories": 0, "products": 0}
    slugs = {}
    for c in CATEGORIES:
        existing = get_category_by_slug(c["slug"])
        if existing is None:
            existing = create_category(c)
            created["categories"] += 1
        slugs[c["slug"]] = existing["id"]
    for p in PRODUCTS:
        if collection("product").find_one({"name": p["name"]}):
            continue
        data = {k: v for k, v in p.items() if k != "category"}
        data["category_id"] = slugs[p["category"]]
        create_product(data)
        created["products"] += 1
    logger.info("Seeded %d categories and %d products", created["categories"], created["products"])
    return created
