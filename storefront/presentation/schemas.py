from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storefront.domain.models import OrderStatus


class CheckoutRequest(BaseModel):
    # Адрес проверяется в use case, чтобы ошибка была 400, а не 422
    address: Optional[Dict[str, Any]] = None


class CheckoutResponse(BaseModel):
    order_id: str
    total_amount: Decimal
    status: OrderStatus


class AddCartItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)


class UpdateCartItemRequest(BaseModel):
    quantity: int


class SyncCartItem(BaseModel):
    product_id: str
    quantity: int


class SyncCartRequest(BaseModel):
    items: List[SyncCartItem] = []


class ProductResponse(BaseModel):
    id: str
    title: str
    price: Decimal
    stock: int


class CartLineResponse(BaseModel):
    id: str
    product_id: str
    quantity: int
    product: Optional[ProductResponse] = None

    @classmethod
    def from_domain(cls, line, product=None):
        return cls(
            id=line.id,
            product_id=line.product_id,
            quantity=line.quantity,
            product=ProductResponse(**product.model_dump()) if product else None
        )


class CartResponse(BaseModel):
    items: List[CartLineResponse]
    total_items: int
    subtotal: Decimal
    tax: Decimal
    total: Decimal

    @classmethod
    def from_view(cls, view):
        return cls(
            items=[CartLineResponse.from_domain(v.line, v.product) for v in view.lines],
            total_items=view.totals.total_items,
            subtotal=view.totals.subtotal,
            tax=view.totals.tax,
            total=view.totals.total
        )


class OrderItemResponse(BaseModel):
    id: str
    product_id: str
    quantity: int
    price_at_purchase: Decimal


class OrderResponse(BaseModel):
    id: str
    total_amount: Decimal
    address: Dict[str, Any]
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse]

    @classmethod
    def from_domain(cls, order):
        return cls(
            id=order.id,
            total_amount=order.total_amount,
            address=order.address.model_dump(by_alias=True),
            status=order.status,
            created_at=order.created_at,
            updated_at=order.updated_at,
            items=[
                OrderItemResponse(
                    id=item.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price_at_purchase=item.price_at_purchase
                )
                for item in order.items
            ]
        )


class ErrorResponse(BaseModel):
    detail: str
