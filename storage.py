"""
Data-access layer: query functions per entity plus the aggregate queries
used by the admin dashboard. Functions return plain dicts with a string `id`.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import collection, create_document, get_documents, serialize, to_object_id, transaction
from pricing import compute_totals, format_money, in_price_range
from schemas import Category, CartItem, Order, OrderItem, Product, Review, User, WishlistItem

logger = logging.getLogger(__name__)

DEFAULT_SORT = [("featured", -1), ("created_at", -1), ("_id", -1)]
SORTS = {
    "featured": DEFAULT_SORT,
    "newest": [("created_at", -1), ("_id", -1)],
    "rating": [("average_rating", -1), ("review_count", -1), ("_id", -1)],
}


class CartEmptyError(Exception):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _find_by_id(name: str, id_str: str, session=None) -> Optional[Dict[str, Any]]:
    oid = to_object_id(id_str)
    if oid is None:
        return None
    return serialize(collection(name).find_one({"_id": oid}, session=session))


def _public_user(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user["id"], "name": user.get("name"), "email": user.get("email"), "avatar_url": user.get("avatar_url")}


def _users_by_id(ids) -> Dict[str, Dict[str, Any]]:
    oids = [o for o in (to_object_id(i) for i in set(ids)) if o is not None]
    return {str(u["_id"]): serialize(u) for u in collection("user").find({"_id": {"$in": oids}})}


def _products_by_id(ids, session=None) -> Dict[str, Dict[str, Any]]:
    oids = [o for o in (to_object_id(i) for i in set(ids)) if o is not None]
    return {str(p["_id"]): serialize(p) for p in collection("product").find({"_id": {"$in": oids}}, session=session)}


# Users

def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    return _find_by_id("user", user_id)


def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    return serialize(collection("user").find_one({"email": email.lower()}))


def upsert_user(email: str, name: Optional[str] = None, avatar_url: Optional[str] = None,
                sub: Optional[str] = None, is_admin: Optional[bool] = None) -> Dict[str, Any]:
    """Create or refresh a user keyed by email.

    `is_admin` is only written when given, so a sign-in never demotes an admin.
    """
    profile = User(email=email, name=name, avatar_url=avatar_url, sub=sub, is_admin=bool(is_admin))
    now = _now()
    update: Dict[str, Any] = {
        "$set": {"name": profile.name, "avatar_url": profile.avatar_url, "updated_at": now},
        "$setOnInsert": {"created_at": now},
    }
    if profile.sub is not None:
        update["$set"]["sub"] = profile.sub
    if is_admin is None:
        update["$setOnInsert"]["is_admin"] = False
    else:
        update["$set"]["is_admin"] = profile.is_admin
    doc = collection("user").find_one_and_update(
        {"email": profile.email.lower()}, update, upsert=True, return_document=ReturnDocument.AFTER
    )
    return serialize(doc)


# Categories

def list_categories() -> List[Dict[str, Any]]:
    return get_documents("category", sort=[("display_order", 1), ("name", 1)])


def get_category_by_slug(slug: str) -> Optional[Dict[str, Any]]:
    return serialize(collection("category").find_one({"slug": slug}))


def create_category(data: Dict[str, Any]) -> Dict[str, Any]:
    category_id = create_document("category", Category(**data))
    return _find_by_id("category", category_id)


def update_category(category_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    oid = to_object_id(category_id)
    if oid is None:
        return None
    doc = collection("category").find_one_and_update(
        {"_id": oid}, {"$set": {**data, "updated_at": _now()}}, return_document=ReturnDocument.AFTER
    )
    return serialize(doc)


def delete_category(category_id: str) -> bool:
    oid = to_object_id(category_id)
    if oid is None:
        return False
    res = collection("category").delete_one({"_id": oid})
    if res.deleted_count:
        collection("product").update_many({"category_id": category_id}, {"$set": {"category_id": None}})
    return res.deleted_count > 0


# Products

def _attach_categories(products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    categories = {c["id"]: c for c in list_categories()}
    for p in products:
        p["category"] = categories.get(p.get("category_id"))
    return products


def list_products(category: Optional[str] = None, featured: bool = False, bestseller: bool = False,
                  limit: Optional[int] = None, sort: str = "featured", price: str = "all") -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if category:
        cat = get_category_by_slug(category)
        if cat is None:
            return []
        query["category_id"] = cat["id"]
    if featured:
        query["featured"] = True
    if bestseller:
        query["bestseller"] = True

    cursor = collection("product").find(query).sort(SORTS.get(sort, DEFAULT_SORT))
    products = [serialize(p) for p in cursor]
    if price != "all":
        products = [p for p in products if in_price_range(p["price"], price)]
    if sort in ("price-low", "price-high"):
        products.sort(key=lambda p: Decimal(p["price"]), reverse=sort == "price-high")
    if limit:
        products = products[:limit]
    return _attach_categories(products)


def get_product(product_id: str) -> Optional[Dict[str, Any]]:
    product = _find_by_id("product", product_id)
    if product is None:
        return None
    return _attach_categories([product])[0]


def create_product(data: Dict[str, Any]) -> Dict[str, Any]:
    product_id = create_document("product", Product(**data))
    return get_product(product_id)


def update_product(product_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    oid = to_object_id(product_id)
    if oid is None:
        return None
    update = dict(data)
    if "price" in update:
        update["price"] = format_money(update["price"])
    update["updated_at"] = _now()
    doc = collection("product").find_one_and_update({"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER)
    if doc is None:
        return None
    return _attach_categories([serialize(doc)])[0]


def delete_product(product_id: str) -> bool:
    oid = to_object_id(product_id)
    if oid is None:
        return False
    res = collection("product").delete_one({"_id": oid})
    collection("cart_item").delete_many({"product_id": product_id})
    collection("wishlist_item").delete_many({"product_id": product_id})
    return res.deleted_count > 0


# Reviews

def list_reviews(product_id: str) -> List[Dict[str, Any]]:
    reviews = [serialize(r) for r in collection("review").find({"product_id": product_id}).sort([("created_at", -1), ("_id", -1)])]
    users = _users_by_id(r["user_id"] for r in reviews)
    for r in reviews:
        r["user"] = _public_user(users.get(r["user_id"]))
    return reviews


def create_review(product_id: str, user_id: str, rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
    review_id = create_document("review", Review(product_id=product_id, user_id=user_id, rating=rating, comment=comment))
    update_product_rating(product_id)
    return _find_by_id("review", review_id)


def update_product_rating(product_id: str) -> None:
    """Recompute the product's average from every review it has."""
    pipeline = [
        {"$match": {"product_id": product_id}},
        {"$group": {"_id": "$product_id", "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]
    agg = list(collection("review").aggregate(pipeline))
    oid = to_object_id(product_id)
    if agg and oid is not None:
        collection("product").update_one(
            {"_id": oid}, {"$set": {"average_rating": round(agg[0]["avg"], 2), "review_count": agg[0]["count"]}}
        )


# Cart

def get_cart(user_id: str, session=None) -> List[Dict[str, Any]]:
    rows = [serialize(c) for c in collection("cart_item").find({"user_id": user_id}, session=session).sort([("created_at", 1), ("_id", 1)])]
    products = _products_by_id((r["product_id"] for r in rows), session=session)
    cart = []
    for row in rows:
        product = products.get(row["product_id"])
        if product is None:
            continue
        row["product"] = product
        cart.append(row)
    return cart


def get_cart_item(item_id: str) -> Optional[Dict[str, Any]]:
    return _find_by_id("cart_item", item_id)


def cart_quantity(user_id: str, product_id: str) -> int:
    row = collection("cart_item").find_one({"user_id": user_id, "product_id": product_id}, {"quantity": 1})
    return row["quantity"] if row else 0


def add_to_cart(user_id: str, product_id: str, quantity: int = 1) -> Dict[str, Any]:
    """Add to the cart, merging into the existing row for this product."""
    item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
    now = _now()
    doc = collection("cart_item").find_one_and_update(
        {"user_id": item.user_id, "product_id": item.product_id},
        {"$inc": {"quantity": item.quantity}, "$set": {"updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return serialize(doc)


def update_cart_item(item_id: str, quantity: int) -> Optional[Dict[str, Any]]:
    oid = to_object_id(item_id)
    if oid is None:
        return None
    doc = collection("cart_item").find_one_and_update(
        {"_id": oid}, {"$set": {"quantity": quantity, "updated_at": _now()}}, return_document=ReturnDocument.AFTER
    )
    return serialize(doc)


def remove_from_cart(item_id: str) -> bool:
    oid = to_object_id(item_id)
    if oid is None:
        return False
    return collection("cart_item").delete_one({"_id": oid}).deleted_count > 0


def clear_cart(user_id: str) -> int:
    return collection("cart_item").delete_many({"user_id": user_id}).deleted_count


# Wishlist

def get_wishlist(user_id: str) -> List[Dict[str, Any]]:
    rows = [serialize(w) for w in collection("wishlist_item").find({"user_id": user_id}).sort([("created_at", -1), ("_id", -1)])]
    products = _attach_categories(list(_products_by_id(r["product_id"] for r in rows).values()))
    by_id = {p["id"]: p for p in products}
    return [{**r, "product": by_id[r["product_id"]]} for r in rows if r["product_id"] in by_id]


def toggle_wishlist(user_id: str, product_id: str) -> bool:
    """Returns True when the product was added, False when it was removed."""
    res = collection("wishlist_item").delete_one({"user_id": user_id, "product_id": product_id})
    if res.deleted_count:
        return False
    try:
        create_document("wishlist_item", WishlistItem(user_id=user_id, product_id=product_id))
    except DuplicateKeyError:
        # a concurrent toggle inserted it first
        pass
    return True


# Orders

def list_user_orders(user_id: str) -> List[Dict[str, Any]]:
    return get_documents("order", {"user_id": user_id}, sort=[("created_at", -1), ("_id", -1)])


def list_orders(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = collection("order").find().sort([("created_at", -1), ("_id", -1)])
    if limit:
        cursor = cursor.limit(limit)
    orders = [serialize(o) for o in cursor]
    users = _users_by_id(o["user_id"] for o in orders)
    for o in orders:
        o["user"] = _public_user(users.get(o["user_id"]))
    return orders


def get_order(order_id: str) -> Optional[Dict[str, Any]]:
    return _find_by_id("order", order_id)


def place_order(user_id: str, payment_method: str, shipping_address: Dict[str, Any]) -> Dict[str, Any]:
    """Turn the user's cart into an order priced at current catalog prices.

    Line items are embedded in the order document, so the order and its
    items are written together. Only the cart rows that were priced are
    removed afterwards.
    """
    with transaction() as session:
        cart = get_cart(user_id, session=session)
        if not cart:
            raise CartEmptyError("Cart is empty")

        totals = compute_totals((row["product"]["price"], row["quantity"]) for row in cart)
        items = [
            OrderItem(
                product_id=row["product"]["id"],
                product_name=row["product"]["name"],
                product_price=row["product"]["price"],
                quantity=row["quantity"],
                subtotal=Decimal(row["product"]["price"]) * row["quantity"],
            )
            for row in cart
        ]
        order = Order(
            user_id=user_id,
            items=items,
            subtotal=totals.subtotal,
            shipping=totals.shipping,
            tax=totals.tax,
            total_amount=totals.total,
            payment_method=payment_method,
            shipping_address=shipping_address,
        )
        order_id = create_document("order", order, session=session)
        cart_ids = [to_object_id(row["id"]) for row in cart]
        collection("cart_item").delete_many({"_id": {"$in": cart_ids}}, session=session)

    logger.info("Order %s placed by user %s total=%s", order_id, user_id, format_money(totals.total))
    return get_order(order_id)


def update_order_status(order_id: str, status: str) -> Optional[Dict[str, Any]]:
    oid = to_object_id(order_id)
    if oid is None:
        return None
    doc = collection("order").find_one_and_update(
        {"_id": oid}, {"$set": {"status": status, "updated_at": _now()}}, return_document=ReturnDocument.AFTER
    )
    return serialize(doc)


# Admin stats

def admin_stats() -> Dict[str, Any]:
    revenue = sum((Decimal(o.get("total_amount", "0")) for o in collection("order").find({}, {"total_amount": 1})), Decimal("0"))
    products = collection("product")
    orders = collection("order")
    return {
        "total_revenue": float(revenue),
        "total_orders": orders.count_documents({}),
        "total_products": products.count_documents({}),
        "total_customers": collection("user").count_documents({}),
        "low_stock_products": products.count_documents({"stock_quantity": {"$gt": 0, "$lt": 10}}),
        "out_of_stock_products": products.count_documents({"stock_quantity": 0}),
        "pending_orders": orders.count_documents({"status": "pending"}),
    }
