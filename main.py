import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func, inspect, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

import orders as lifecycle
from auth import (
    Identity,
    TokenError,
    check_owner,
    create_token,
    decode_token,
    get_current_user,
    get_optional_user,
    hash_password,
    identity_from_claims,
    require_admin,
    require_owner,
    verify_password,
)
from config import CORS_ORIGINS, ENVIRONMENT, LOG_LEVEL, PORT, TOKEN_COOKIE, TOKEN_EXPIRE_MIN
from database import get_db, ping
from models import Business, BusinessOwner, Category, Order, Product, Review, User
from schemas import (
    AdminStats,
    BusinessCreate,
    BusinessDetail,
    BusinessOut,
    BusinessPatch,
    BusinessSummary,
    CancelOrderBody,
    CategoryOut,
    ChangePasswordBody,
    CreateOrderBody,
    LoginBody,
    OrderDetail,
    OrderOut,
    ProductCreate,
    ProductOut,
    ProductPatch,
    RegisterBody,
    ReviewCreate,
    ReviewOut,
    UpdateOrderStatusBody,
    UserOut,
    UserPatch,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Campus Enterprise Hub API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_api_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api/"):
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


# ---------------------- Errors ----------------------
def _format_validation_error(err: Dict[str, Any]) -> str:
    msg = err.get("msg", "")
    if err.get("type") == "value_error":
        return msg.removeprefix("Value error, ")
    loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
    return f"{loc}: {msg}" if loc else msg


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [_format_validation_error(e) for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Something went wrong!"})


def order_http_error(e: lifecycle.OrderError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


# ---------------------- Helpers ----------------------
def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        httponly=True,
        secure=ENVIRONMENT == "production",
        samesite="strict",
        max_age=TOKEN_EXPIRE_MIN * 60,
    )


def apply_patch(row, patch: BaseModel) -> None:
    """Copy the fields the client actually sent; null means 'leave as is'."""
    changes = patch.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    for field, value in changes.items():
        setattr(row, field, value)


def commit_or_conflict(session: Session, conflict_detail: str, error_detail: str) -> None:
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail=conflict_detail)
    except SQLAlchemyError:
        session.rollback()
        logger.exception(error_detail)
        raise HTTPException(status_code=500, detail=error_detail)


def get_active_user(session: Session, user_id: int) -> User:
    user = session.scalar(
        select(User).options(selectinload(User.owner_profile)).where(User.id == user_id, User.is_active.is_(True))
    )
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def get_active_business(session: Session, business_id: int) -> Business:
    business = session.scalar(select(Business).where(Business.id == business_id, Business.is_active.is_(True)))
    if business is None:
        raise HTTPException(status_code=404, detail="Business not found")
    return business


def require_self(user: Identity, user_id: int) -> None:
    if user.id != user_id:
        raise HTTPException(status_code=403, detail="You can only access your own account")


def _product_count():
    return (
        select(func.count(Product.id))
        .where(Product.business_id == Business.id, Product.is_active.is_(True))
        .correlate(Business)
        .scalar_subquery()
    )


def _review_stats(fn):
    return (
        select(fn)
        .where(Review.business_id == Business.id, Review.is_active.is_(True))
        .correlate(Business)
        .scalar_subquery()
    )


def business_summaries(session: Session, *criteria, viewer: Optional[Identity] = None,
                       limit: Optional[int] = None, offset: int = 0) -> List[BusinessSummary]:
    stmt = (
        select(
            Business,
            BusinessOwner.user_id,
            _product_count().label("product_count"),
            _review_stats(func.count(Review.id)).label("review_count"),
            _review_stats(func.avg(Review.rating)).label("average_rating"),
        )
        .join(BusinessOwner, Business.owner_id == BusinessOwner.id)
        .where(Business.is_active.is_(True), *criteria)
        .order_by(Business.created_at.desc(), Business.id.desc())
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    out = []
    for business, owner_user_id, product_count, review_count, average_rating in session.execute(stmt):
        data = BusinessOut.model_validate(business).model_dump()
        data.update(
            product_count=product_count or 0,
            review_count=review_count or 0,
            average_rating=round(float(average_rating), 2) if average_rating is not None else None,
            is_owner=viewer is not None and viewer.id == owner_user_id,
        )
        out.append(BusinessSummary(**data))
    return out


def business_search(q: str):
    return or_(
        Business.name.icontains(q, autoescape=True),
        Business.description.icontains(q, autoescape=True),
        Business.category.icontains(q, autoescape=True),
    )


def product_search(q: str):
    return or_(
        Product.name.icontains(q, autoescape=True),
        Product.description.icontains(q, autoescape=True),
        Product.category.icontains(q, autoescape=True),
    )


def list_products(session: Session, *criteria, limit: Optional[int] = None, offset: int = 0) -> List[Product]:
    stmt = (
        select(Product)
        .join(Business, Product.business_id == Business.id)
        .where(Product.is_active.is_(True), Business.is_active.is_(True), *criteria)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.scalars(stmt))


def order_party(session: Session, order: Order, user: Identity) -> Optional[str]:
    """'customer', 'owner' or None for the caller's relation to an order."""
    if order.user_id == user.id:
        return "customer"
    owner_id = session.scalar(
        select(BusinessOwner.user_id)
        .join(Business, Business.owner_id == BusinessOwner.id)
        .where(Business.id == order.business_id)
    )
    if owner_id == user.id:
        return "owner"
    return None


def load_order_or_404(session: Session, order_id: int) -> Order:
    try:
        return lifecycle.get_order(session, order_id)
    except lifecycle.OrderNotFound as e:
        raise order_http_error(e)


# ---------------------- Auth ----------------------
@app.post("/api/auth/register", status_code=201)
def register(body: RegisterBody, response: Response, session: Session = Depends(get_db)):
    clash = session.scalar(
        select(User.id).where(
            or_(User.username == body.username, User.email == body.email, User.index_number == body.index_number)
        )
    )
    if clash is not None:
        raise HTTPException(status_code=409, detail="User already exists with this username, email, or index number")

    user = User(
        username=body.username,
        email=body.email,
        password_hash=hash_password(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        index_number=body.index_number,
        hall_of_residence=body.hall_of_residence,
        department=body.department,
        phone_number=body.phone_number,
        account_type=body.account_type,
    )
    if body.account_type == "business_owner":
        user.owner_profile = BusinessOwner()
    session.add(user)
    commit_or_conflict(
        session,
        "User already exists with this username, email, or index number",
        "Registration failed. Please try again.",
    )
    logger.info("Registered user %s (%s)", user.id, user.account_type)

    token = create_token(user)
    set_auth_cookie(response, token)
    return {"message": "Registration successful!", "user": UserOut.model_validate(user), "token": token}


@app.post("/api/auth/login")
def login(body: LoginBody, response: Response, session: Session = Depends(get_db)):
    user = session.scalar(
        select(User)
        .options(selectinload(User.owner_profile))
        .where(or_(User.username == body.username, User.email == body.username.lower()), User.is_active.is_(True))
    )
    if user is None or not verify_password(user.password_hash, body.password):
        raise HTTPException(status_code=401, detail="Invalid username or password")

    token = create_token(user)
    set_auth_cookie(response, token)
    return {"message": "Login successful!", "user": UserOut.model_validate(user), "token": token}


@app.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "Logged out successfully"}


@app.get("/api/auth/me")
def me(user: Identity = Depends(get_current_user), session: Session = Depends(get_db)):
    return {"user": UserOut.model_validate(get_active_user(session, user.id))}


@app.put("/api/auth/profile")
def update_profile(body: UserPatch, user: Identity = Depends(get_current_user), session: Session = Depends(get_db)):
    row = get_active_user(session, user.id)
    apply_patch(row, body)
    commit_or_conflict(session, "Profile update conflicts with an existing user", "Failed to update profile")
    return {"message": "Profile updated successfully", "user": UserOut.model_validate(row)}


@app.put("/api/auth/change-password")
def change_password(body: ChangePasswordBody, user: Identity = Depends(get_current_user),
                    session: Session = Depends(get_db)):
    row = get_active_user(session, user.id)
    if not verify_password(row.password_hash, body.current_password):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    row.password_hash = hash_password(body.new_password)
    commit_or_conflict(session, "Failed to change password", "Failed to change password")
    return {"message": "Password changed successfully"}


@app.get("/api/auth/verify")
def verify(request: Request):
    auth_header = request.headers.get("authorization", "")
    token = auth_header[7:] if auth_header.lower().startswith("bearer ") else request.cookies.get(TOKEN_COOKIE)
    if not token:
        return JSONResponse(status_code=401, content={"valid": False, "message": "No token provided"})
    try:
        identity = identity_from_claims(decode_token(token))
    except TokenError as e:
        message = "Token expired" if e.reason == "expired" else "Invalid token"
        return JSONResponse(status_code=401, content={"valid": False, "message": message})
    return {"valid": True, "user": identity}


# ---------------------- Users ----------------------
@app.get("/api/users", response_model=List[UserOut])
def list_users(
    q: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_db),
):
    stmt = select(User).options(selectinload(User.owner_profile)).where(User.is_active.is_(True))
    if q:
        stmt = stmt.where(or_(
            User.username.icontains(q, autoescape=True),
            User.first_name.icontains(q, autoescape=True),
            User.last_name.icontains(q, autoescape=True),
            User.department.icontains(q, autoescape=True),
        ))
    stmt = stmt.order_by(User.created_at.desc(), User.id.desc()).limit(limit).offset(offset)
    return list(session.scalars(stmt))


@app.post("/api/users/me/business-owner", status_code=201)
def become_business_owner(response: Response, user: Identity = Depends(get_current_user),
                          session: Session = Depends(get_db)):
    row = get_active_user(session, user.id)
    if row.owner_profile is not None:
        raise HTTPException(status_code=409, detail="Account is already a business owner")
    row.owner_profile = BusinessOwner()
    row.account_type = "business_owner"
    commit_or_conflict(session, "Account is already a business owner", "Failed to upgrade account")
    token = create_token(row)
    set_auth_cookie(response, token)
    return {"message": "Business owner account created", "user": UserOut.model_validate(row), "token": token}


@app.get("/api/users/{user_id}", response_model=UserOut)
def get_user(user_id: int, session: Session = Depends(get_db)):
    return get_active_user(session, user_id)


@app.put("/api/users/{user_id}", response_model=UserOut)
def update_user(user_id: int, body: UserPatch, user: Identity = Depends(get_current_user),
                session: Session = Depends(get_db)):
    require_self(user, user_id)
    row = get_active_user(session, user_id)
    apply_patch(row, body)
    commit_or_conflict(session, "Update conflicts with an existing user", "Error updating user")
    return row


@app.delete("/api/users/{user_id}")
def delete_user(user_id: int, response: Response, user: Identity = Depends(get_current_user),
                session: Session = Depends(get_db)):
    require_self(user, user_id)
    row = get_active_user(session, user_id)
    row.is_active = False
    if row.owner_profile is not None:
        # an owner's shops go with the account
        session.execute(
            update(Business)
            .where(Business.owner_id == row.owner_profile.id, Business.is_active.is_(True))
            .values(is_active=False)
        )
    commit_or_conflict(session, "Error deleting user", "Error deleting user")
    logger.info("User %s deactivated", user_id)
    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "User deleted successfully"}


@app.get("/api/users/{user_id}/businesses", response_model=List[BusinessSummary])
def user_businesses(user_id: int, session: Session = Depends(get_db)):
    return business_summaries(session, BusinessOwner.user_id == user_id)


@app.get("/api/users/{user_id}/orders", response_model=List[OrderOut])
def user_orders(user_id: int, user: Identity = Depends(get_current_user), session: Session = Depends(get_db)):
    require_self(user, user_id)
    stmt = select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
    return list(session.scalars(stmt))


# ---------------------- Businesses ----------------------
@app.get("/api/businesses", response_model=List[BusinessSummary])
def list_businesses(
    q: Optional[str] = None,
    category: Optional[str] = None,
    location: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    viewer: Optional[Identity] = Depends(get_optional_user),
    session: Session = Depends(get_db),
):
    criteria = []
    if q:
        criteria.append(business_search(q))
    if category:
        criteria.append(Business.category == category)
    if location:
        criteria.append(Business.location.icontains(location, autoescape=True))
    return business_summaries(session, *criteria, viewer=viewer, limit=limit, offset=offset)


@app.get("/api/businesses/search/{query}", response_model=List[BusinessSummary])
def search_businesses(query: str, viewer: Optional[Identity] = Depends(get_optional_user),
                      session: Session = Depends(get_db)):
    return business_summaries(session, business_search(query), viewer=viewer)


@app.get("/api/businesses/{business_id}", response_model=BusinessDetail)
def get_business(business_id: int, viewer: Optional[Identity] = Depends(get_optional_user),
                 session: Session = Depends(get_db)):
    found = business_summaries(session, Business.id == business_id, viewer=viewer)
    if not found:
        raise HTTPException(status_code=404, detail="Business not found")
    products = list_products(session, Product.business_id == business_id, Product.is_available.is_(True))
    reviews = session.scalars(
        select(Review)
        .where(Review.business_id == business_id, Review.is_active.is_(True))
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(10)
    )
    return BusinessDetail(
        **found[0].model_dump(),
        products=[ProductOut.model_validate(p) for p in products],
        reviews=[ReviewOut.model_validate(r) for r in reviews],
    )


@app.post("/api/businesses", status_code=201, response_model=BusinessOut)
def create_business(body: BusinessCreate, user: Identity = Depends(get_current_user),
                    session: Session = Depends(get_db)):
    owner = session.scalar(select(BusinessOwner).where(BusinessOwner.user_id == user.id))
    if owner is None:
        raise HTTPException(status_code=403, detail="You must be a business owner to create a business")
    business = Business(owner_id=owner.id, **body.model_dump())
    session.add(business)
    commit_or_conflict(session, "Error creating business", "Error creating business")
    logger.info("Business %s created by user %s", business.id, user.id)
    return business


@app.put("/api/businesses/{business_id}", response_model=BusinessOut)
def update_business(business_id: int, body: BusinessPatch,
                    user: Identity = Depends(require_owner("business")),
                    session: Session = Depends(get_db)):
    business = get_active_business(session, business_id)
    apply_patch(business, body)
    commit_or_conflict(session, "Error updating business", "Error updating business")
    return business


@app.delete("/api/businesses/{business_id}")
def delete_business(business_id: int, user: Identity = Depends(require_owner("business")),
                    session: Session = Depends(get_db)):
    business = get_active_business(session, business_id)
    business.is_active = False
    commit_or_conflict(session, "Error deleting business", "Error deleting business")
    logger.info("Business %s deactivated by user %s", business_id, user.id)
    return {"message": "Business deleted successfully"}


@app.get("/api/businesses/{business_id}/products", response_model=List[ProductOut])
def business_products(business_id: int, session: Session = Depends(get_db)):
    get_active_business(session, business_id)
    return list_products(session, Product.business_id == business_id)


@app.get("/api/businesses/{business_id}/reviews", response_model=List[ReviewOut])
def business_reviews(business_id: int, session: Session = Depends(get_db)):
    get_active_business(session, business_id)
    stmt = (
        select(Review)
        .where(Review.business_id == business_id, Review.is_active.is_(True))
        .order_by(Review.created_at.desc(), Review.id.desc())
    )
    return list(session.scalars(stmt))


@app.post("/api/businesses/{business_id}/reviews", status_code=201, response_model=ReviewOut)
def create_review(business_id: int, body: ReviewCreate, user: Identity = Depends(get_current_user),
                  session: Session = Depends(get_db)):
    get_active_business(session, business_id)
    review = Review(user_id=user.id, business_id=business_id, rating=body.rating, comment=body.comment)
    session.add(review)
    commit_or_conflict(session, "Error creating review", "Error creating review")
    return review


# ---------------------- Products ----------------------
@app.get("/api/products", response_model=List[ProductOut])
def get_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    business_id: Optional[int] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_db),
):
    criteria = []
    if q:
        criteria.append(product_search(q))
    if category:
        criteria.append(Product.category == category)
    if business_id is not None:
        criteria.append(Product.business_id == business_id)
    return list_products(session, *criteria, limit=limit, offset=offset)


@app.get("/api/products/search/{query}", response_model=List[ProductOut])
def search_products(query: str, session: Session = Depends(get_db)):
    return list_products(session, product_search(query))


@app.get("/api/products/category/{category}", response_model=List[ProductOut])
def products_by_category(category: str, session: Session = Depends(get_db)):
    return list_products(session, Product.category == category)


@app.get("/api/products/{product_id}", response_model=ProductOut)
def get_product(product_id: int, session: Session = Depends(get_db)):
    found = list_products(session, Product.id == product_id)
    if not found:
        raise HTTPException(status_code=404, detail="Product not found")
    return found[0]


@app.post("/api/products", status_code=201, response_model=ProductOut)
def create_product(body: ProductCreate, user: Identity = Depends(get_current_user),
                   session: Session = Depends(get_db)):
    check_owner(session, "business", body.business_id, user)
    product = Product(**body.model_dump())
    session.add(product)
    commit_or_conflict(session, "Error creating product", "Error creating product")
    return product


@app.put("/api/products/{product_id}", response_model=ProductOut)
def update_product(product_id: int, body: ProductPatch,
                   user: Identity = Depends(require_owner("product")),
                   session: Session = Depends(get_db)):
    product = session.get(Product, product_id)
    apply_patch(product, body)
    commit_or_conflict(session, "Error updating product", "Error updating product")
    return product


@app.delete("/api/products/{product_id}")
def delete_product(product_id: int, user: Identity = Depends(require_owner("product")),
                   session: Session = Depends(get_db)):
    product = session.get(Product, product_id)
    product.is_active = False
    commit_or_conflict(session, "Error deleting product", "Error deleting product")
    return {"message": "Product deleted successfully"}


# ---------------------- Reviews & Categories ----------------------
@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: int, user: Identity = Depends(get_current_user), session: Session = Depends(get_db)):
    review = session.scalar(select(Review).where(Review.id == review_id, Review.is_active.is_(True)))
    if review is None:
        raise HTTPException(status_code=404, detail="Review not found")
    if review.user_id != user.id:
        raise HTTPException(status_code=403, detail="You can only delete your own reviews")
    review.is_active = False
    commit_or_conflict(session, "Error deleting review", "Error deleting review")
    return {"message": "Review deleted successfully"}


@app.get("/api/categories", response_model=List[CategoryOut])
def list_categories(session: Session = Depends(get_db)):
    return list(session.scalars(select(Category).order_by(Category.name)))


# ---------------------- Orders ----------------------
@app.post("/api/orders", status_code=201)
def place_order(body: CreateOrderBody, user: Identity = Depends(get_current_user),
                session: Session = Depends(get_db)):
    if body.user_id is not None and body.user_id != user.id:
        raise HTTPException(status_code=403, detail="You can only place orders for yourself")
    get_active_business(session, body.business_id)
    try:
        order = lifecycle.create_order(
            session,
            user_id=user.id,
            business_id=body.business_id,
            items=[item.model_dump() for item in body.items],
            total_amount=body.total_amount,
            delivery_address=body.delivery_address,
            delivery_instructions=body.delivery_instructions,
            payment_method=body.payment_method,
        )
    except lifecycle.OrderError as e:
        raise order_http_error(e)
    except SQLAlchemyError:
        logger.exception("Error creating order")
        raise HTTPException(status_code=500, detail="Error creating order")
    return {"message": "Order created successfully", "order": OrderDetail.model_validate(order)}


@app.get("/api/orders", response_model=List[OrderOut])
def my_orders(user: Identity = Depends(get_current_user), session: Session = Depends(get_db)):
    stmt = select(Order).where(Order.user_id == user.id).order_by(Order.created_at.desc(), Order.id.desc())
    return list(session.scalars(stmt))


@app.get("/api/orders/business/{business_id}", response_model=List[OrderOut])
def business_orders(business_id: int, user: Identity = Depends(require_owner("business")),
                    session: Session = Depends(get_db)):
    stmt = select(Order).where(Order.business_id == business_id).order_by(Order.created_at.desc(), Order.id.desc())
    return list(session.scalars(stmt))


@app.get("/api/orders/user/{user_id}", response_model=List[OrderOut])
def orders_for_user(user_id: int, user: Identity = Depends(get_current_user), session: Session = Depends(get_db)):
    return user_orders(user_id, user, session)


@app.get("/api/orders/{order_id}", response_model=OrderDetail)
def get_order(order_id: int, user: Identity = Depends(get_current_user), session: Session = Depends(get_db)):
    order = load_order_or_404(session, order_id)
    if order_party(session, order, user) is None:
        raise HTTPException(status_code=403, detail="You don't have access to this order")
    return order


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: int, body: UpdateOrderStatusBody, user: Identity = Depends(get_current_user),
                        session: Session = Depends(get_db)):
    order = load_order_or_404(session, order_id)
    if order_party(session, order, user) != "owner":
        raise HTTPException(status_code=403, detail="Only the business owner can update order status")
    try:
        order = lifecycle.update_order_status(session, order_id, body.status)
    except lifecycle.OrderError as e:
        raise order_http_error(e)
    except SQLAlchemyError:
        logger.exception("Error updating order status")
        raise HTTPException(status_code=500, detail="Error updating order status")
    return {"message": "Order status updated successfully", "order": OrderDetail.model_validate(order)}


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: int, body: Optional[CancelOrderBody] = None, user: Identity = Depends(get_current_user),
                 session: Session = Depends(get_db)):
    order = load_order_or_404(session, order_id)
    if order_party(session, order, user) is None:
        raise HTTPException(status_code=403, detail="You don't have access to this order")
    try:
        order = lifecycle.cancel_order(session, order_id, reason=body.reason if body else None)
    except lifecycle.OrderError as e:
        raise order_http_error(e)
    except SQLAlchemyError:
        logger.exception("Error cancelling order")
        raise HTTPException(status_code=500, detail="Error cancelling order")
    return {"message": "Order cancelled successfully", "order": OrderDetail.model_validate(order)}


# ---------------------- Admin ----------------------
@app.get("/api/admin/stats", response_model=AdminStats)
def admin_stats(user: Identity = Depends(require_admin), session: Session = Depends(get_db)):
    def count(stmt) -> int:
        return session.scalar(stmt) or 0

    by_status = dict.fromkeys(lifecycle.ORDER_STATUSES, 0)
    for status, n in session.execute(select(Order.status, func.count(Order.id)).group_by(Order.status)):
        by_status[status] = n

    return AdminStats(
        total_users=count(select(func.count(User.id)).where(User.is_active.is_(True))),
        total_business_owners=count(select(func.count(BusinessOwner.id))),
        total_businesses=count(select(func.count(Business.id))),
        active_businesses=count(select(func.count(Business.id)).where(Business.is_active.is_(True))),
        inactive_businesses=count(select(func.count(Business.id)).where(Business.is_active.is_(False))),
        unverified_businesses=count(
            select(func.count(Business.id)).where(Business.is_active.is_(True), Business.is_verified.is_(False))
        ),
        total_products=count(select(func.count(Product.id)).where(Product.is_active.is_(True))),
        orders_by_status=by_status,
    )


# ---------------------- Misc ----------------------
@app.get("/")
def read_root():
    return {"message": "Campus Enterprise Hub API"}


@app.get("/test")
def test_database(session: Session = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "dialect": None,
        "tables": [],
    }
    try:
        bind = session.get_bind()
        ping(bind)
        response["dialect"] = bind.dialect.name
        response["tables"] = sorted(inspect(bind).get_table_names())[:10]
        response["database"] = "✅ Connected & Working"
    except SQLAlchemyError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
