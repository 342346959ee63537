"""
Wire schemas for Campus Enterprise Hub

Request bodies are validated here before any store call. Update bodies are
explicit typed patches: only the fields declared on the patch model can be
changed, anything else in the payload is ignored.

Response models read straight from the ORM rows (from_attributes).
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from config import CAMPUS_EMAIL_PATTERN
from models import MAX_QUANTITY

OrderStatus = Literal['pending', 'confirmed', 'preparing', 'ready', 'delivered', 'cancelled']
AccountType = Literal['user', 'business_owner']

PASSWORD_RE = re.compile(r"^(?=.*[A-Za-z])(?=.*\d)[A-Za-z\d@$!%*#?&]{6,}$")
INDEX_NUMBER_RE = re.compile(r"^[0-9]{8,10}$")
CAMPUS_EMAIL_RE = re.compile(CAMPUS_EMAIL_PATTERN)

PASSWORD_RULE = "Password must be at least 6 characters long and contain at least one letter and one number"


# ---------------------- Auth & Users ----------------------
class RegisterBody(BaseModel):
    username: str
    email: EmailStr
    password: str
    confirm_password: str
    first_name: str
    last_name: str
    index_number: str
    hall_of_residence: str
    department: str
    phone_number: str
    account_type: AccountType = 'user'

    @field_validator('username')
    @classmethod
    def _username(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError('Username must be at least 3 characters long')
        return v

    @field_validator('email')
    @classmethod
    def _campus_email(cls, v: str) -> str:
        if not CAMPUS_EMAIL_RE.match(v):
            raise ValueError('Please use your campus email address (@knust.edu.gh or @st.knust.edu.gh)')
        return v.lower()

    @field_validator('password')
    @classmethod
    def _password(cls, v: str) -> str:
        if not PASSWORD_RE.match(v):
            raise ValueError(PASSWORD_RULE)
        return v

    @field_validator('first_name', 'last_name')
    @classmethod
    def _names(cls, v: str, info) -> str:
        v = v.strip()
        if len(v) < 2:
            label = info.field_name.replace('_', ' ').capitalize()
            raise ValueError(f'{label} must be at least 2 characters long')
        return v

    @field_validator('index_number')
    @classmethod
    def _index_number(cls, v: str) -> str:
        if not INDEX_NUMBER_RE.match(v):
            raise ValueError('Please provide a valid index number (8-10 digits)')
        return v

    @field_validator('hall_of_residence', 'department')
    @classmethod
    def _required_text(cls, v: str, info) -> str:
        if not v.strip():
            label = info.field_name.replace('_', ' ').capitalize()
            raise ValueError(f'{label} is required')
        return v.strip()

    @field_validator('phone_number')
    @classmethod
    def _phone(cls, v: str) -> str:
        if len(v.strip()) < 9:
            raise ValueError('Please provide a valid phone number')
        return v.strip()

    @model_validator(mode='after')
    def _passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError('Password confirmation does not match')
        return self


class LoginBody(BaseModel):
    username: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., min_length=1)


class ChangePasswordBody(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str
    confirm_password: str

    @field_validator('new_password')
    @classmethod
    def _password(cls, v: str) -> str:
        if not PASSWORD_RE.match(v):
            raise ValueError(PASSWORD_RULE)
        return v

    @model_validator(mode='after')
    def _passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError('New password confirmation does not match')
        return self


class UserPatch(BaseModel):
    model_config = ConfigDict(extra='ignore')

    first_name: Optional[str] = Field(None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(None, min_length=2, max_length=50)
    hall_of_residence: Optional[str] = Field(None, min_length=1, max_length=100)
    department: Optional[str] = Field(None, min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, min_length=9, max_length=20)
    profile_picture_url: Optional[str] = None


class BusinessOwnerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    is_verified: bool
    verified_at: Optional[datetime] = None


class UserOut(BaseModel):
    """Public profile; never carries the password hash."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    index_number: str
    hall_of_residence: str
    department: str
    phone_number: str
    profile_picture_url: Optional[str] = None
    account_type: AccountType
    is_verified: bool
    created_at: Optional[datetime] = None
    owner_profile: Optional[BusinessOwnerOut] = None


# ---------------------- Businesses ----------------------
class BusinessCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    category: str = Field(..., min_length=1, max_length=50)
    location: str = Field(..., min_length=1, max_length=100)
    contact_number: str = Field(..., min_length=9, max_length=20)
    whatsapp_link: Optional[str] = None
    instagram_handle: Optional[str] = None
    facebook_page: Optional[str] = None
    website_url: Optional[str] = None
    operating_hours: Optional[str] = None
    logo_url: Optional[str] = None


class BusinessPatch(BaseModel):
    model_config = ConfigDict(extra='ignore')

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    location: Optional[str] = Field(None, min_length=1, max_length=100)
    contact_number: Optional[str] = Field(None, min_length=9, max_length=20)
    whatsapp_link: Optional[str] = None
    instagram_handle: Optional[str] = None
    facebook_page: Optional[str] = None
    website_url: Optional[str] = None
    operating_hours: Optional[str] = None
    logo_url: Optional[str] = None


class BusinessOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    name: str
    description: Optional[str] = None
    category: str
    location: str
    contact_number: str
    whatsapp_link: Optional[str] = None
    instagram_handle: Optional[str] = None
    facebook_page: Optional[str] = None
    website_url: Optional[str] = None
    operating_hours: Optional[str] = None
    logo_url: Optional[str] = None
    is_verified: bool
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BusinessSummary(BusinessOut):
    product_count: int = 0
    review_count: int = 0
    average_rating: Optional[float] = None
    is_owner: bool = False


# ---------------------- Products ----------------------
class ProductCreate(BaseModel):
    business_id: int
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    image_url: Optional[str] = None
    category: str = Field(..., min_length=1, max_length=50)
    stock_quantity: int = Field(0, ge=0, le=MAX_QUANTITY)
    is_available: bool = True


class ProductPatch(BaseModel):
    """business_id is not patchable: a product stays with its business."""
    model_config = ConfigDict(extra='ignore')

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    image_url: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    stock_quantity: Optional[int] = Field(None, ge=0, le=MAX_QUANTITY)
    is_available: Optional[bool] = None


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    business_id: int
    name: str
    description: Optional[str] = None
    price: float
    image_url: Optional[str] = None
    category: str
    stock_quantity: int
    is_available: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------- Reviews & Categories ----------------------
class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    business_id: int
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    icon_class: Optional[str] = None


class BusinessDetail(BusinessSummary):
    products: List[ProductOut] = []
    reviews: List[ReviewOut] = []


# ---------------------- Orders ----------------------
class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1, le=MAX_QUANTITY)
    unit_price: Optional[Decimal] = Field(None, ge=0, description="Optional; must match the current product price")


class CreateOrderBody(BaseModel):
    user_id: Optional[int] = Field(None, description="Defaults to the authenticated user")
    business_id: int
    items: List[OrderItemIn] = Field(..., min_length=1)
    total_amount: Optional[Decimal] = Field(None, ge=0, description="Optional; checked against the server-side total")
    delivery_address: str = Field(..., min_length=1)
    delivery_instructions: Optional[str] = None
    payment_method: str = Field('cash', min_length=1, max_length=50)


class UpdateOrderStatusBody(BaseModel):
    status: str


class CancelOrderBody(BaseModel):
    reason: Optional[str] = None


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    quantity: int
    unit_price: float
    product_name: Optional[str] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    business_id: int
    total_amount: float
    delivery_address: str
    delivery_instructions: Optional[str] = None
    payment_method: str
    status: OrderStatus
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderDetail(OrderOut):
    items: List[OrderItemOut] = []


# ---------------------- Admin ----------------------
class AdminStats(BaseModel):
    total_users: int
    total_business_owners: int
    total_businesses: int
    active_businesses: int
    inactive_businesses: int
    unverified_businesses: int
    total_products: int
    orders_by_status: dict
