import os
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field, field_validator
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from dotenv import load_dotenv
load_dotenv()

import auth
import database
import storage
from auth import get_current_user, require_admin, require_user
from schemas import MAX_QUANTITY, Money, OrderStatus, PaymentMethod, ShippingAddress
from seed import seed_catalog

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("store")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
    else:
        logger.warning("DATABASE_URL not set; data endpoints will fail")
    if not auth.auth_configured():
        logger.warning("Auth environment variables not configured. Using development sign-in mode.")
        logger.warning("Set CLIENT_ID, CLIENT_SECRET and ISSUER_URL for production auth.")
    yield


app = FastAPI(title="Ingaa Baby Store API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Errors render as {"message": ...}
@app.exception_handler(StarletteHTTPException)
async def http_error(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(_request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content={"message": "; ".join(parts) or "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": str(exc)})


# Request bodies
class CategoryCreate(BaseModel):
    slug: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    display_order: int = 0


class CategoryUpdate(BaseModel):
    slug: Optional[str] = Field(None, min_length=1)
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    display_order: Optional[int] = None

    @field_validator("slug", "name", "display_order")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Money
    stock_quantity: int = Field(0, ge=0)
    category_id: Optional[str] = None
    image_urls: List[str] = []
    featured: bool = False
    bestseller: bool = False
    safety_certifications: List[str] = []
    age_range: Optional[str] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Money] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = None
    image_urls: Optional[List[str]] = None
    featured: Optional[bool] = None
    bestseller: Optional[bool] = None
    safety_certifications: Optional[List[str]] = None
    age_range: Optional[str] = None

    @field_validator("name", "price", "stock_quantity", "image_urls", "featured", "bestseller", "safety_certifications")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class CartAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=MAX_QUANTITY)


class CartUpdate(BaseModel):
    quantity: int = Field(..., ge=1, le=MAX_QUANTITY)


class WishlistToggle(BaseModel):
    product_id: str


class OrderCreate(BaseModel):
    payment_method: PaymentMethod
    shipping_address: ShippingAddress


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


def _product_or_404(product_id: str) -> Dict[str, Any]:
    product = storage.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _owned_cart_item(item_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    item = storage.get_cart_item(item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    if item["user_id"] != user["id"]:
        raise HTTPException(status_code=403, detail="Forbidden")
    return item


def _check_category(category_id: Optional[str]) -> None:
    if category_id is None:
        return
    oid = database.to_object_id(category_id)
    if oid is None or database.collection("category").find_one({"_id": oid}) is None:
        raise HTTPException(status_code=400, detail="Unknown category")


# Auth
@app.get("/api/login")
def login(request: Request):
    if not auth.auth_configured():
        user = auth.dev_login()
        response = RedirectResponse("/", status_code=302)
        auth.set_session_cookie(response, auth.create_session(user["id"]))
        logger.info("Development user logged in (admin access)")
        return response

    state = secrets.token_urlsafe(16)
    try:
        url = auth.authorization_url(auth.redirect_uri_for(request), state)
    except Exception:
        logger.exception("OIDC discovery failed")
        raise HTTPException(status_code=500, detail="Auth not configured")
    response = RedirectResponse(url, status_code=302)
    response.set_cookie(
        auth.STATE_COOKIE, auth.sign(state), max_age=auth.STATE_MAX_AGE, httponly=True, samesite="lax", secure=auth.SECURE_COOKIES
    )
    return response


@app.get("/api/auth/callback")
def auth_callback(request: Request, code: Optional[str] = None, state: Optional[str] = None):
    if not auth.auth_configured():
        raise HTTPException(status_code=500, detail="Auth not configured")

    failed = RedirectResponse("/?error=auth_failed", status_code=302)
    failed.delete_cookie(auth.STATE_COOKIE)
    expected = auth.unsign(request.cookies.get(auth.STATE_COOKIE))
    if not code or not state or expected is None or expected != state:
        logger.warning("Auth callback rejected: missing code or state mismatch")
        return failed
    try:
        tokens = auth.exchange_code(code, auth.redirect_uri_for(request))
        user = auth.user_from_userinfo(auth.fetch_userinfo(tokens["access_token"]))
    except Exception:
        logger.exception("Auth callback error")
        return failed

    response = RedirectResponse("/", status_code=302)
    response.delete_cookie(auth.STATE_COOKIE)
    auth.set_session_cookie(response, auth.create_session(user["id"]))
    logger.info("User %s signed in", user["id"])
    return response


@app.get("/api/logout")
def logout(request: Request):
    auth.destroy_session(request.cookies.get(auth.SESSION_COOKIE))
    response = RedirectResponse("/", status_code=302)
    response.delete_cookie(auth.SESSION_COOKIE)
    return response


@app.get("/api/auth/user")
def auth_user(user: Optional[Dict[str, Any]] = Depends(get_current_user)):
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


# Catalog
@app.get("/api/categories")
def get_categories():
    return storage.list_categories()


@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    featured: bool = False,
    bestseller: bool = False,
    limit: Optional[int] = Query(None, ge=1),
    sort: Literal["featured", "newest", "price-low", "price-high", "rating"] = "featured",
    price: Literal["all", "under25", "25to50", "50to100", "over100"] = "all",
):
    return storage.list_products(category=category, featured=featured, bestseller=bestseller, limit=limit, sort=sort, price=price)


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return _product_or_404(product_id)


@app.get("/api/products/{product_id}/reviews")
def get_reviews(product_id: str):
    return storage.list_reviews(product_id)


@app.post("/api/products/{product_id}/reviews")
def add_review(product_id: str, body: ReviewCreate, user: Dict[str, Any] = Depends(require_user)):
    _product_or_404(product_id)
    return storage.create_review(product_id, user["id"], body.rating, body.comment)


# Cart
@app.get("/api/cart")
def get_cart(user: Dict[str, Any] = Depends(require_user)):
    return storage.get_cart(user["id"])


@app.post("/api/cart")
def add_to_cart(body: CartAdd, user: Dict[str, Any] = Depends(require_user)):
    _product_or_404(body.product_id)
    if storage.cart_quantity(user["id"], body.product_id) + body.quantity > MAX_QUANTITY:
        raise HTTPException(status_code=400, detail=f"At most {MAX_QUANTITY} of one product per cart")
    return storage.add_to_cart(user["id"], body.product_id, body.quantity)


@app.delete("/api/cart")
def clear_cart(user: Dict[str, Any] = Depends(require_user)):
    return {"success": True, "removed": storage.clear_cart(user["id"])}


@app.put("/api/cart/{item_id}")
def update_cart_item(item_id: str, body: CartUpdate, user: Dict[str, Any] = Depends(require_user)):
    _owned_cart_item(item_id, user)
    item = storage.update_cart_item(item_id, body.quantity)
    if not item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return item


@app.delete("/api/cart/{item_id}")
def remove_cart_item(item_id: str, user: Dict[str, Any] = Depends(require_user)):
    _owned_cart_item(item_id, user)
    storage.remove_from_cart(item_id)
    return {"success": True}


# Wishlist
@app.get("/api/wishlist")
def get_wishlist(user: Dict[str, Any] = Depends(require_user)):
    return storage.get_wishlist(user["id"])


@app.post("/api/wishlist/toggle")
def toggle_wishlist(body: WishlistToggle, user: Dict[str, Any] = Depends(require_user)):
    _product_or_404(body.product_id)
    if storage.toggle_wishlist(user["id"], body.product_id):
        return {"added": True}
    return {"removed": True}


# Orders
@app.get("/api/orders")
def my_orders(user: Dict[str, Any] = Depends(require_user)):
    return storage.list_user_orders(user["id"])


@app.get("/api/orders/{order_id}")
def order_detail(order_id: str, user: Dict[str, Any] = Depends(require_user)):
    order = storage.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order["user_id"] != user["id"] and not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Forbidden")
    return order


@app.post("/api/orders")
def create_order(body: OrderCreate, user: Dict[str, Any] = Depends(require_user)):
    try:
        order = storage.place_order(user["id"], body.payment_method, body.shipping_address.model_dump())
    except storage.CartEmptyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"order_id": order["id"], "order": order}


# Admin
@app.get("/api/admin/stats")
def admin_stats(_admin: Dict[str, Any] = Depends(require_admin)):
    return storage.admin_stats()


@app.get("/api/admin/orders")
def admin_orders(limit: Optional[int] = Query(None, ge=1), _admin: Dict[str, Any] = Depends(require_admin)):
    return storage.list_orders(limit=limit)


@app.put("/api/admin/orders/{order_id}")
def admin_update_order(order_id: str, body: OrderStatusUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    order = storage.update_order_status(order_id, body.status)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Admin %s set order %s to %s", admin["id"], order_id, body.status)
    return order


@app.post("/api/admin/products")
def admin_create_product(body: ProductCreate, admin: Dict[str, Any] = Depends(require_admin)):
    _check_category(body.category_id)
    product = storage.create_product(body.model_dump())
    logger.info("Admin %s created product %s", admin["id"], product["id"])
    return product


@app.put("/api/admin/products/{product_id}")
def admin_update_product(product_id: str, body: ProductUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    update = body.model_dump(exclude_unset=True)
    if update.get("category_id") is not None:
        _check_category(update["category_id"])
    product = storage.update_product(product_id, update)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Admin %s updated product %s", admin["id"], product_id)
    return product


@app.delete("/api/admin/products/{product_id}")
def admin_delete_product(product_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    if storage.delete_product(product_id):
        logger.info("Admin %s deleted product %s", admin["id"], product_id)
    return {"success": True}


@app.post("/api/admin/categories")
def admin_create_category(body: CategoryCreate, admin: Dict[str, Any] = Depends(require_admin)):
    try:
        category = storage.create_category(body.model_dump())
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Category slug already exists")
    logger.info("Admin %s created category %s", admin["id"], category["slug"])
    return category


@app.put("/api/admin/categories/{category_id}")
def admin_update_category(category_id: str, body: CategoryUpdate, _admin: Dict[str, Any] = Depends(require_admin)):
    try:
        category = storage.update_category(category_id, body.model_dump(exclude_unset=True))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Category slug already exists")
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@app.delete("/api/admin/categories/{category_id}")
def admin_delete_category(category_id: str, _admin: Dict[str, Any] = Depends(require_admin)):
    if not storage.delete_category(category_id):
        raise HTTPException(status_code=404, detail="Category not found")
    return {"success": True}


@app.post("/api/admin/seed")
def admin_seed(_admin: Dict[str, Any] = Depends(require_admin)):
    return {"ok": True, **seed_catalog()}


# Health + test
@app.get("/")
def root():
    return {"message": "Ingaa Baby Store API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "auth": "OIDC" if auth.auth_configured() else "development",
        "collections": []
    }
    try:
        if database.db is not None:
            collections = database.db.list_collection_names()
            response["collections"] = collections[:10]
    except Exception as e:
        response["error"] = str(e)[:120]
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
