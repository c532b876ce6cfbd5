from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from .models import Role


class Credentials(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    token: str


class MessageResponse(BaseModel):
    message: str


class UserInfo(BaseModel):
    name: str
    role: Role


class UserRead(BaseModel):
    id: int
    username: str
    role: Role

    model_config = ConfigDict(from_attributes=True)


class UsernameUpdate(BaseModel):
    username: str


class PasswordUpdate(BaseModel):
    old_password: str
    new_password: str


class RoleUpdate(BaseModel):
    role: str


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None


class CategoryRead(BaseModel):
    id: int
    name: str
    description: str

    model_config = ConfigDict(from_attributes=True)


# price bounds are checked by the catalog so that bad prices surface as
# InvalidArgument rather than a schema error
class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category_id: int
    price: Decimal
    manufacturer: str = ""


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category_id: Optional[int] = None
    price: Optional[Decimal] = None
    manufacturer: Optional[str] = None


class ProductRead(BaseModel):
    id: int
    name: str
    description: str
    category_id: int
    price: Decimal
    manufacturer: str
    rating: float

    model_config = ConfigDict(from_attributes=True)


class CategoryDetail(CategoryRead):
    products: List[ProductRead] = []


class ProductPage(BaseModel):
    data: List[ProductRead]
    total: int
    page: int
    limit: int


class ManufacturerCount(BaseModel):
    manufacturer: str
    count: int


class ProductInOrder(BaseModel):
    product_id: int
    quantity: int


class OrderCreate(BaseModel):
    products: List[ProductInOrder] = []


class QuantityUpdate(BaseModel):
    quantity: int


class OrderLineRead(BaseModel):
    product_id: int
    quantity: int
    product: ProductRead

    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: int
    user_id: int
    items: List[OrderLineRead] = []

    model_config = ConfigDict(from_attributes=True)


class OrderCreated(BaseModel):
    order_id: int


class OrderPage(BaseModel):
    data: List[OrderRead]
    total: int
    page: int
    limit: int


class ReviewCreate(BaseModel):
    review_text: str = ""
    rating: int


class ReviewRead(BaseModel):
    id: int
    review_text: str
    rating: int
    user_id: Optional[int] = None
    product_id: int

    model_config = ConfigDict(from_attributes=True)


class ReviewCreated(BaseModel):
    review_id: int
    product_rating: float
