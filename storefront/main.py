import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import accounts, catalog, config, errors, orders, policy, schemas
from .auth import Claims, refresh_token, verify_token
from .db import Base, SessionLocal, engine

logging.basicConfig(
    level=config.get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create tables if not existing. Schema migration is handled outside this service.
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Storefront API")

# Error kind -> status family. Engines never see HTTP codes.
STATUS_BY_KIND = {
    errors.Unauthenticated.kind: 401,
    errors.Forbidden.kind: 403,
    errors.NotFound.kind: 404,
    errors.InvalidArgument.kind: 400,
    errors.InvalidReference.kind: 400,
    errors.Conflict.kind: 409,
    errors.InvalidState.kind: 400,
    errors.DeadlineExceeded.kind: 408,
    errors.RefreshNotYetEligible.kind: 400,
    errors.Internal.kind: 500,
}


@app.exception_handler(errors.StorefrontError)
async def storefront_error_handler(request: Request, exc: errors.StorefrontError):
    status = STATUS_BY_KIND.get(exc.kind, 500)
    detail = exc.message if status < 500 else "internal server error"
    return JSONResponse(status_code=status, content={"detail": detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # do not echo the offending input back, it may hold a password
    return JSONResponse(status_code=400, content={"detail": "Invalid request data"})


# Dependency to get DB session per request

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_claims(authorization: Optional[str] = Header(default=None)) -> Claims:
    return verify_token(authorization)


def get_admin(claims: Claims = Depends(get_claims)) -> Claims:
    return policy.require_admin(claims)


@app.get("/health")
def health():
    return {"status": "ok"}


# -------------------- Auth --------------------

@app.post("/register", response_model=schemas.MessageResponse, status_code=201)
def register(creds: schemas.Credentials, db: Session = Depends(get_db)):
    accounts.register(db, creds.username, creds.password)
    return {"message": "user registered successfully"}


@app.post("/login", response_model=schemas.TokenResponse)
def login(creds: schemas.Credentials, db: Session = Depends(get_db)):
    return {"token": accounts.login(db, creds.username, creds.password)}


@app.post("/refresh", response_model=schemas.TokenResponse)
def refresh(authorization: Optional[str] = Header(default=None)):
    return {"token": refresh_token(authorization)}


# -------------------- Products --------------------

@app.get("/products/count-by-manufacturer", response_model=List[schemas.ManufacturerCount])
def count_by_manufacturer(db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    return catalog.count_by_manufacturer(db)


@app.get("/products/price-range", response_model=List[schemas.ProductRead])
def products_by_price_range(
    min_price: str = Query(..., alias="minPrice"),
    max_price: str = Query(..., alias="maxPrice"),
    db: Session = Depends(get_db),
    claims: Claims = Depends(get_claims),
):
    return catalog.products_by_price_range(db, min_price, max_price)


@app.put("/products/manufacturer", response_model=schemas.MessageResponse)
def update_manufacturer(manufacturer: str = "", db: Session = Depends(get_db), admin: Claims = Depends(get_admin)):
    changed = catalog.bulk_update_manufacturer(db, manufacturer)
    return {"message": f"Manufacturer updated on {changed} products"}


@app.get("/products", response_model=schemas.ProductPage)
def list_products(
    page: int = 1,
    limit: int = 10,
    sort: str = "id",
    order: str = "asc",
    name: Optional[str] = None,
    category_id: Optional[int] = None,
    db: Session = Depends(get_db),
    claims: Claims = Depends(get_claims),
):
    result = catalog.list_products(
        db, name=name, category_id=category_id, sort=sort, direction=order, page=page, limit=limit
    )
    return result._asdict()


@app.get("/products/{product_id}", response_model=schemas.ProductRead)
def get_product(product_id: int, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    return catalog.get_product(db, product_id)


@app.post("/products", response_model=schemas.ProductRead, status_code=201)
def create_product(data: schemas.ProductCreate, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)):
    return catalog.create_product(db, data)


@app.put("/products/{product_id}", response_model=schemas.ProductRead)
def update_product(
    product_id: int, data: schemas.ProductUpdate, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)
):
    return catalog.update_product(db, product_id, data)


@app.delete("/products/{product_id}", response_model=schemas.MessageResponse)
def delete_product(product_id: int, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)):
    catalog.delete_product(db, product_id)
    return {"message": "product deleted"}


@app.post("/products/{product_id}/reviews", response_model=schemas.ReviewCreated, status_code=201)
def create_review(
    product_id: int, data: schemas.ReviewCreate, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)
):
    review = catalog.create_review(db, product_id, claims.user_id, data.review_text, data.rating)
    return {"review_id": review.id, "product_rating": catalog.get_product(db, product_id).rating}


@app.get("/products/{product_id}/reviews", response_model=List[schemas.ReviewRead])
def list_reviews(product_id: int, db: Session = Depends(get_db)):
    return catalog.list_reviews(db, product_id)


# -------------------- Categories --------------------

@app.get("/categories", response_model=List[schemas.CategoryDetail])
def list_categories(db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    return catalog.list_categories(db)


@app.get("/categories/{category_id}", response_model=schemas.CategoryDetail)
def get_category(category_id: int, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    return catalog.get_category(db, category_id)


@app.post("/categories", response_model=schemas.CategoryRead, status_code=201)
def create_category(data: schemas.CategoryCreate, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)):
    return catalog.create_category(db, data)


@app.put("/categories/{category_id}", response_model=schemas.CategoryRead)
def update_category(
    category_id: int, data: schemas.CategoryUpdate, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)
):
    return catalog.update_category(db, category_id, data)


@app.delete("/categories/{category_id}", response_model=schemas.MessageResponse)
def delete_category(category_id: int, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)):
    catalog.delete_category(db, category_id)
    return {"message": "category deleted"}


# -------------------- Orders --------------------

@app.post("/orders", response_model=schemas.OrderCreated, status_code=201)
def create_order(data: schemas.OrderCreate, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    return {"order_id": orders.create_order(db, claims.user_id, data.products)}


@app.get("/orders", response_model=List[schemas.OrderRead])
def list_orders(db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    return orders.list_user_orders(db, claims.user_id)


@app.get("/orders/{order_id}", response_model=schemas.OrderRead)
def get_order(order_id: int, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    return orders.get_order(db, order_id, claims.user_id)


@app.post("/orders/{order_id}/products", response_model=schemas.MessageResponse)
def add_product_to_order(
    order_id: int, item: schemas.ProductInOrder, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)
):
    merged = orders.add_product_to_order(db, order_id, claims.user_id, item.product_id, item.quantity)
    return {"message": "Product quantity updated" if merged else "Product added to order"}


@app.patch("/orders/{order_id}/products/{product_id}", response_model=schemas.MessageResponse)
def update_product_quantity(
    order_id: int,
    product_id: int,
    data: schemas.QuantityUpdate,
    db: Session = Depends(get_db),
    claims: Claims = Depends(get_claims),
):
    orders.update_line_item_quantity(db, order_id, claims.user_id, product_id, data.quantity)
    return {"message": "Product quantity updated successfully"}


@app.delete("/orders/{order_id}/products/{product_id}", response_model=schemas.MessageResponse)
def remove_product_from_order(
    order_id: int, product_id: int, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)
):
    orders.remove_line_item(db, order_id, claims.user_id, product_id)
    return {"message": "Product removed from order successfully"}


@app.delete("/orders/{order_id}", response_model=schemas.MessageResponse)
def delete_order(order_id: int, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    orders.delete_order(db, order_id, claims.user_id)
    return {"message": "Order deleted successfully"}


@app.get("/admin/orders", response_model=schemas.OrderPage)
def admin_list_orders(
    page: int = 1,
    limit: int = 10,
    sort: str = "id",
    order: str = "asc",
    user_id: Optional[int] = None,
    order_id: Optional[int] = None,
    db: Session = Depends(get_db),
    admin: Claims = Depends(get_admin),
):
    result = orders.admin_list_orders(
        db, user_id=user_id, order_id=order_id, sort=sort, direction=order, page=page, limit=limit
    )
    return result._asdict()


@app.delete("/admin/orders/{order_id}", response_model=schemas.MessageResponse)
def admin_delete_order(order_id: int, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)):
    orders.admin_delete_order(db, order_id)
    return {"message": "Order deleted successfully"}


# -------------------- Users --------------------

@app.get("/users/me", response_model=schemas.UserInfo)
def get_me(db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    user = accounts.get_user_info(db, claims)
    return {"name": user.username, "role": user.role}


@app.delete("/users/me", response_model=schemas.MessageResponse)
def delete_me(db: Session = Depends(get_db), claims: Claims = Depends(get_claims)):
    accounts.delete_self(db, claims)
    return {"message": "Your account has been deleted successfully"}


@app.patch("/users/me/username", response_model=schemas.MessageResponse)
def update_username(
    data: schemas.UsernameUpdate, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)
):
    accounts.update_username(db, claims.user_id, data.username)
    return {"message": "User name updated successfully"}


@app.patch("/users/me/password", response_model=schemas.MessageResponse)
def update_password(
    data: schemas.PasswordUpdate, db: Session = Depends(get_db), claims: Claims = Depends(get_claims)
):
    accounts.update_password(db, claims.user_id, data.old_password, data.new_password)
    return {"message": "Password updated successfully"}


@app.get("/users", response_model=List[schemas.UserRead])
def list_users(db: Session = Depends(get_db), admin: Claims = Depends(get_admin)):
    return accounts.list_users(db)


@app.get("/users/{user_id}", response_model=schemas.UserRead)
def get_user(user_id: int, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)):
    return accounts.get_user(db, user_id)


@app.patch("/users/{user_id}/role", response_model=schemas.UserRead)
def update_user_role(
    user_id: int, data: schemas.RoleUpdate, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)
):
    return accounts.update_user_role(db, user_id, data.role)


@app.delete("/users/{user_id}", response_model=schemas.MessageResponse)
def delete_user(user_id: int, db: Session = Depends(get_db), admin: Claims = Depends(get_admin)):
    accounts.admin_delete_user(db, user_id)
    return {"message": "User and related data deleted successfully"}
