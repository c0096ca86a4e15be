from sqlalchemy import (
    Table, Column, String, Integer, Numeric, Enum, DateTime, JSON, MetaData,
    ForeignKey, CheckConstraint, UniqueConstraint,
)
from sqlalchemy.sql import func

from storefront.domain.models import OrderStatus

metadata = MetaData()


products_tbl = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("title", String, nullable=False),
    Column("price", Numeric(10, 2), nullable=False),
    Column("stock", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
)


cart_items_tbl = Table(
    "cart_items",
    metadata,
    Column("id", String, primary_key=True),
    Column("owner_id", String, nullable=False, index=True),
    Column("product_id", String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
    Column("quantity", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    UniqueConstraint("owner_id", "product_id", name="uq_cart_items_owner_product"),
)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("owner_id", String, nullable=False, index=True),
    Column("total_amount", Numeric(12, 2), nullable=False),
    Column("address", JSON, nullable=False),
    Column(
        "status",
        Enum(OrderStatus, name="order_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderStatus.PENDING,
    ),
    Column("idempotency_key", String, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    UniqueConstraint("owner_id", "idempotency_key", name="uq_orders_owner_idempotency_key"),
)


order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("product_id", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("price_at_purchase", Numeric(10, 2), nullable=False),
    CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
)
