import uuid
from collections import defaultdict
from typing import Dict, Optional, List, Sequence
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.domain.models import CartLine, Order, OrderItem, OrderStatus, Product, ShippingAddress
from storefront.domain.exceptions import DuplicateOrderError
from storefront.infrastructure.db_schema import products_tbl, cart_items_tbl, orders_tbl, order_items_tbl
from storefront.application.interfaces import ProductRepository, CartRepository, OrderRepository


class SQLAlchemyProductRepository(ProductRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id == product_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def get_by_ids(self, product_ids: Sequence[str]) -> Dict[str, Product]:
        if not product_ids:
            return {}
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id.in_(set(product_ids)))
        )
        return {row.id: self._to_domain(row) for row in result.fetchall()}

    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        # Проверка и списание одним UPDATE: строка блокируется до конца транзакции
        stmt = (
            update(products_tbl)
            .where(
                products_tbl.c.id == product_id,
                products_tbl.c.stock >= quantity
            )
            .values(stock=products_tbl.c.stock - quantity)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    def _to_domain(self, row) -> Product:
        """Трансформация DB → Domain"""
        return Product(
            id=row.id,
            title=row.title,
            price=row.price,
            stock=row.stock
        )


class SQLAlchemyCartRepository(CartRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_by_owner(self, owner_id: str) -> List[CartLine]:
        result = await self._session.execute(
            select(cart_items_tbl)
            .where(cart_items_tbl.c.owner_id == owner_id)
            .order_by(cart_items_tbl.c.created_at.asc(), cart_items_tbl.c.id.asc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def get(self, owner_id: str, line_id: str) -> Optional[CartLine]:
        result = await self._session.execute(
            select(cart_items_tbl).where(
                cart_items_tbl.c.owner_id == owner_id,
                cart_items_tbl.c.id == line_id
            )
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def add(self, owner_id: str, product_id: str, quantity: int = 1) -> CartLine:
        # Повторное добавление увеличивает количество, строка не дублируется
        result = await self._session.execute(
            update(cart_items_tbl)
            .where(
                cart_items_tbl.c.owner_id == owner_id,
                cart_items_tbl.c.product_id == product_id
            )
            .values(
                quantity=cart_items_tbl.c.quantity + quantity,
                updated_at=datetime.now(timezone.utc)
            )
        )
        if result.rowcount == 0:
            await self._session.execute(
                insert(cart_items_tbl).values(
                    id=str(uuid.uuid4()),
                    owner_id=owner_id,
                    product_id=product_id,
                    quantity=quantity
                )
            )

        row = (await self._session.execute(
            select(cart_items_tbl).where(
                cart_items_tbl.c.owner_id == owner_id,
                cart_items_tbl.c.product_id == product_id
            )
        )).fetchone()
        return self._to_domain(row)

    async def set_quantity(self, owner_id: str, line_id: str, quantity: int) -> Optional[CartLine]:
        result = await self._session.execute(
            update(cart_items_tbl)
            .where(
                cart_items_tbl.c.owner_id == owner_id,
                cart_items_tbl.c.id == line_id
            )
            .values(
                quantity=quantity,
                updated_at=datetime.now(timezone.utc)
            )
        )
        if result.rowcount == 0:
            return None
        return await self.get(owner_id, line_id)

    async def delete(self, owner_id: str, line_id: str) -> bool:
        result = await self._session.execute(
            delete(cart_items_tbl).where(
                cart_items_tbl.c.owner_id == owner_id,
                cart_items_tbl.c.id == line_id
            )
        )
        return result.rowcount > 0

    async def clear(self, owner_id: str) -> int:
        result = await self._session.execute(
            delete(cart_items_tbl).where(cart_items_tbl.c.owner_id == owner_id)
        )
        return result.rowcount

    def _to_domain(self, row) -> CartLine:
        return CartLine(
            id=row.id,
            owner_id=row.owner_id,
            product_id=row.product_id,
            quantity=row.quantity
        )


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.id == order_id)
        )
        row = result.fetchone()
        if not row:
            return None
        items = await self._items_for([row.id])
        return self._to_domain(row, items[row.id])

    async def get_by_idempotency_key(self, owner_id: str, key: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(
                orders_tbl.c.owner_id == owner_id,
                orders_tbl.c.idempotency_key == key
            )
        )
        row = result.fetchone()
        if not row:
            return None
        items = await self._items_for([row.id])
        return self._to_domain(row, items[row.id])

    async def create(self, order: Order) -> None:
        stmt = insert(orders_tbl).values(
            id=order.id,
            owner_id=order.owner_id,
            total_amount=order.total_amount,
            address=order.address.model_dump(by_alias=True),
            status=order.status,
            idempotency_key=order.idempotency_key,
            created_at=order.created_at,
            updated_at=order.updated_at
        )
        try:
            await self._session.execute(stmt)
        except IntegrityError:
            if order.idempotency_key:
                raise DuplicateOrderError(order.owner_id, order.idempotency_key)
            raise

    async def create_items(self, items: List[OrderItem]) -> None:
        if not items:
            return
        await self._session.execute(
            insert(order_items_tbl),
            [
                {
                    "id": item.id,
                    "order_id": item.order_id,
                    "product_id": item.product_id,
                    "quantity": item.quantity,
                    "price_at_purchase": item.price_at_purchase,
                }
                for item in items
            ]
        )

    async def delete(self, order_id: str) -> None:
        # Повторный вызов безопасен: удаление отсутствующих строк ничего не делает
        await self._session.execute(
            delete(order_items_tbl).where(order_items_tbl.c.order_id == order_id)
        )
        await self._session.execute(
            delete(orders_tbl).where(orders_tbl.c.id == order_id)
        )

    async def list_by_owner(self, owner_id: str) -> List[Order]:
        result = await self._session.execute(
            select(orders_tbl)
            .where(orders_tbl.c.owner_id == owner_id)
            .order_by(orders_tbl.c.created_at.desc())
        )
        rows = result.fetchall()
        items = await self._items_for([row.id for row in rows])
        return [self._to_domain(row, items[row.id]) for row in rows]

    async def _items_for(self, order_ids: List[str]) -> Dict[str, List[OrderItem]]:
        grouped: Dict[str, List[OrderItem]] = defaultdict(list)
        if not order_ids:
            return grouped
        result = await self._session.execute(
            select(order_items_tbl)
            .where(order_items_tbl.c.order_id.in_(order_ids))
            .order_by(order_items_tbl.c.product_id.asc())
        )
        for row in result.fetchall():
            grouped[row.order_id].append(
                OrderItem(
                    id=row.id,
                    order_id=row.order_id,
                    product_id=row.product_id,
                    quantity=row.quantity,
                    price_at_purchase=row.price_at_purchase
                )
            )
        return grouped

    def _to_domain(self, row, items: List[OrderItem]) -> Order:
        """Трансформация DB → Domain"""
        return Order(
            id=row.id,
            owner_id=row.owner_id,
            total_amount=row.total_amount,
            address=ShippingAddress.model_validate(row.address),
            status=OrderStatus(row.status),
            idempotency_key=row.idempotency_key,
            created_at=row.created_at,
            updated_at=row.updated_at,
            items=items
        )
