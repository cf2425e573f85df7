import logging
from dataclasses import asdict
from datetime import timedelta
from typing import Dict, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pymongo.database import Database
from pymongo.errors import PyMongoError

import catalog
import config
import dashboard
import orders
import payments
import reviews
from auth import (
    AuthResponse,
    UserOut,
    authenticate,
    change_password,
    get_current_user,
    issue_token,
    register_user,
    require_admin,
    update_profile,
)
from database import get_db, serialize
from errors import (
    Conflict,
    Forbidden,
    InsufficientStock,
    NotFound,
    ShopError,
    Unauthorized,
    UpstreamFailure,
    ValidationFailed,
)
from pricing import Coupon, resolve_coupon
from schemas import (
    CATEGORIES,
    AdminUserUpdate,
    CancelRequest,
    CartValidateRequest,
    CouponCheck,
    OrderCreate,
    PasswordChange,
    PaymentIntentRequest,
    ProductCreate,
    ProductUpdate,
    ProfileUpdate,
    ReviewCreate,
    ReviewUpdate,
    StatusUpdate,
    StockAdjustment,
    UserRegister,
)
from seed import seed_products

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Attar Store API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping

ERROR_STATUS_CODES: Dict[type, int] = {
    NotFound: 404,
    ValidationFailed: 400,
    Unauthorized: 401,
    Forbidden: 403,
    Conflict: 409,
    InsufficientStock: 409,
    UpstreamFailure: 503,
}


def status_for(exc: ShopError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    """Map ShopError subclasses to HTTP responses."""
    status_code = status_for(exc)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error_type": type(exc).__name__},
        headers=headers,
    )


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={"detail": "Database unavailable", "error_type": "UpstreamFailure"},
    )


def get_coupons() -> Dict[str, Coupon]:
    return config.load_coupons()


@app.get("/")
def read_root():
    return {"message": "Attar store backend is running"}


@app.get("/api/health")
def health_check(db: Database = Depends(get_db)):
    db.command("ping")
    return {"status": "ok"}


# Auth

@app.post("/api/auth/register", response_model=AuthResponse, status_code=201)
def register(data: UserRegister, db: Database = Depends(get_db)):
    return issue_token(register_user(db, data))


@app.post("/api/auth/login", response_model=AuthResponse)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Database = Depends(get_db)):
    return issue_token(authenticate(db, form_data.username, form_data.password))


@app.get("/api/auth/me", response_model=UserOut)
def me(current: UserOut = Depends(get_current_user)):
    return current


@app.put("/api/auth/update-profile", response_model=UserOut)
def edit_profile(data: ProfileUpdate, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return update_profile(db, current, data)


@app.put("/api/auth/change-password")
def edit_password(data: PasswordChange, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    change_password(db, current, data)
    return {"message": "Password updated"}


# Catalog

@app.get("/api/categories")
def list_categories():
    return list(CATEGORIES)


@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    badge: Optional[str] = None,
    gender: Optional[str] = None,
    featured: Optional[bool] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: str = Query("newest", description="newest|price_asc|price_desc|rating_desc|name"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Database = Depends(get_db),
):
    return serialize(catalog.list_products(
        db, category=category, badge=badge, gender=gender, featured=featured, search=search,
        min_price=min_price, max_price=max_price, sort=sort, page=page, limit=limit,
    ))


@app.get("/api/products/featured")
def featured_products(db: Database = Depends(get_db)):
    return serialize(catalog.featured_products(db))


@app.get("/api/products/search")
def search_suggestions(q: str = Query(..., min_length=1), db: Database = Depends(get_db)):
    return catalog.search_suggestions(db, q)


@app.get("/api/products/slug/{slug}")
def get_product_by_slug(slug: str, db: Database = Depends(get_db)):
    return serialize(catalog.get_product_by_slug(db, slug))


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return serialize(catalog.get_product(db, product_id))


@app.get("/api/products/{product_id}/related")
def related_products(product_id: str, db: Database = Depends(get_db)):
    return serialize(catalog.related_products(db, product_id))


@app.post("/api/products", status_code=201)
def create_product(data: ProductCreate, admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    return serialize(catalog.create_product(db, data))


@app.put("/api/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, admin: UserOut = Depends(require_admin),
                   db: Database = Depends(get_db)):
    return serialize(catalog.update_product(db, product_id, data))


@app.post("/api/products/{product_id}/stock")
def adjust_product_stock(product_id: str, data: StockAdjustment, admin: UserOut = Depends(require_admin),
                         db: Database = Depends(get_db)):
    return serialize(catalog.adjust_stock(db, product_id, data.volume, data.change))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"message": "Product removed from store"}


# Reviews

@app.get("/api/reviews/product/{product_id}")
def product_reviews(
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    sort: str = Query("newest", description="newest|oldest|highest|lowest|helpful"),
    db: Database = Depends(get_db),
):
    return serialize(reviews.list_product_reviews(db, product_id, page, limit, sort))


@app.post("/api/reviews", status_code=201)
def add_review(data: ReviewCreate, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(reviews.create_review(db, current, data))


@app.put("/api/reviews/{review_id}")
def edit_review(review_id: str, data: ReviewUpdate, current: UserOut = Depends(get_current_user),
                db: Database = Depends(get_db)):
    return serialize(reviews.update_review(db, current, review_id, data))


@app.delete("/api/reviews/{review_id}")
def remove_review(review_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    reviews.delete_review(db, current, review_id)
    return {"message": "Review deleted"}


@app.post("/api/reviews/{review_id}/helpful")
def helpful_vote(review_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return reviews.toggle_helpful_vote(db, current, review_id)


# Cart

@app.post("/api/cart/validate")
def validate_cart(
    data: CartValidateRequest,
    current: UserOut = Depends(get_current_user),
    db: Database = Depends(get_db),
    coupons: Dict[str, Coupon] = Depends(get_coupons),
):
    return serialize(orders.validate_cart(db, data.items, data.coupon, coupons))


@app.post("/api/cart/coupon")
def check_coupon(data: CouponCheck, current: UserOut = Depends(get_current_user),
                 coupons: Dict[str, Coupon] = Depends(get_coupons)):
    return {"coupon": asdict(resolve_coupon(data.code, coupons))}


# Orders

@app.post("/api/orders", status_code=201)
def place_order(
    data: OrderCreate,
    current: UserOut = Depends(get_current_user),
    db: Database = Depends(get_db),
    coupons: Dict[str, Coupon] = Depends(get_coupons),
):
    return serialize(orders.place_order(db, current, data, coupons))


@app.get("/api/orders/my")
def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current: UserOut = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return serialize(orders.list_my_orders(db, current, page, limit))


@app.get("/api/orders")
def all_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: UserOut = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return serialize(orders.list_orders(db, status, search, page, limit))


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(orders.get_order(db, current, order_id))


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, data: Optional[CancelRequest] = None, current: UserOut = Depends(get_current_user),
                 db: Database = Depends(get_db)):
    reason = data.reason if data else None
    return serialize(orders.cancel_order(db, current, order_id, reason))


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, data: StatusUpdate, admin: UserOut = Depends(require_admin),
                        db: Database = Depends(get_db)):
    return serialize(orders.update_order_status(db, order_id, data))


# Payments

@app.post("/api/payments/create-intent")
def create_payment_intent(
    data: PaymentIntentRequest,
    current: UserOut = Depends(get_current_user),
    db: Database = Depends(get_db),
    gateway: payments.PaymentGateway = Depends(payments.get_gateway),
):
    return payments.create_payment_intent(db, gateway, current, data.order_id)


@app.post("/api/payments/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Database = Depends(get_db),
    gateway: payments.PaymentGateway = Depends(payments.get_gateway),
):
    event = gateway.parse_event(await request.body(), stripe_signature)
    if event is not None:
        outcome = payments.handle_payment_event(db, event)
        logger.info("Webhook %s: %s", event["type"], outcome)
    return {"received": True}


@app.post("/api/payments/confirm-cod/{order_id}")
def confirm_cod(order_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize(payments.confirm_cod(db, current, order_id))


# Admin

@app.get("/api/admin/dashboard")
def admin_dashboard(admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    return serialize(dashboard.dashboard_stats(db))


@app.get("/api/admin/inventory")
def admin_inventory(admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    return serialize(dashboard.inventory_overview(db))


@app.get("/api/admin/analytics")
def admin_analytics(period: int = Query(30, ge=1, le=365), admin: UserOut = Depends(require_admin),
                    db: Database = Depends(get_db)):
    return serialize(dashboard.sales_analytics(db, period))


@app.get("/api/admin/users")
def admin_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: UserOut = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return serialize(dashboard.list_users(db, search, role, page, limit))


@app.put("/api/admin/users/{user_id}")
def admin_update_user(user_id: str, data: AdminUserUpdate, admin: UserOut = Depends(require_admin),
                      db: Database = Depends(get_db)):
    return serialize(dashboard.update_user(db, user_id, data))


@app.post("/api/admin/reconcile-reservations")
def admin_reconcile_reservations(admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    older_than = timedelta(seconds=config.RESERVATION_TIMEOUT_SECONDS)
    return {"removed": orders.reconcile_reservations(db, older_than)}


# Seed sample data if empty
@app.post("/api/seed")
def seed(admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    return {"ok": True, "products_added": seed_products(db)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
