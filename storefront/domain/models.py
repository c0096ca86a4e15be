from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from storefront.domain.exceptions import InsufficientStockError, ProductUnavailableError


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Product(BaseModel):
    """Value Object — товар из каталога"""
    id: str
    title: str
    price: Decimal = Field(ge=0)
    stock: int = Field(ge=0)


class CartLine(BaseModel):
    """Entity — строка корзины пользователя"""
    id: str
    owner_id: str
    product_id: str
    quantity: int = Field(ge=1)


class ShippingAddress(BaseModel):
    """Value Object — адрес доставки и контакты покупателя"""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, frozen=True)

    email: str = Field(min_length=1)
    first_name: str = Field(alias="firstName", min_length=1)
    last_name: str = Field(alias="lastName", min_length=1)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(alias="zipCode", min_length=1)
    country: str = Field(min_length=1)


class OrderItem(BaseModel):
    """Entity — позиция заказа, после создания не меняется"""
    model_config = ConfigDict(frozen=True)

    id: str
    order_id: str
    product_id: str
    quantity: int = Field(ge=1)
    price_at_purchase: Decimal = Field(ge=0)

    @property
    def line_total(self) -> Decimal:
        return self.price_at_purchase * self.quantity


class PricedLine(BaseModel):
    """Строка корзины, проверенная по каталогу. Единственный источник OrderItem."""
    model_config = ConfigDict(frozen=True)

    product_id: str
    title: str
    quantity: int = Field(ge=1)
    price_at_purchase: Decimal = Field(ge=0)

    @classmethod
    def from_catalog(cls, line: CartLine, product: Optional[Product]) -> "PricedLine":
        """Бизнес-правило: товар существует и остатка хватает, цена берется только из каталога"""
        if product is None or product.id != line.product_id:
            raise ProductUnavailableError(line.product_id)
        if product.stock < line.quantity:
            raise InsufficientStockError(product.id, product.stock, line.quantity, title=product.title)
        return cls(
            product_id=product.id,
            title=product.title,
            quantity=line.quantity,
            price_at_purchase=product.price,
        )

    def to_order_item(self, item_id: str, order_id: str) -> OrderItem:
        return OrderItem(
            id=item_id,
            order_id=order_id,
            product_id=self.product_id,
            quantity=self.quantity,
            price_at_purchase=self.price_at_purchase,
        )


class Order(BaseModel):
    """Domain Entity — заказ"""
    id: str
    owner_id: str
    total_amount: Decimal
    address: ShippingAddress
    status: OrderStatus
    idempotency_key: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItem] = []

    def items_total(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))
