import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import insert, select

from storefront.application.checkout import CheckoutDTO, CheckoutUseCase
from storefront.domain.exceptions import DuplicateOrderError, InsufficientStockError, StorageError
from storefront.domain.models import Order, OrderItem, OrderStatus, ShippingAddress
from storefront.infrastructure.db_schema import order_items_tbl, orders_tbl, products_tbl
from storefront.infrastructure.unit_of_work import UnitOfWork


@pytest.fixture
async def sql_uow(session_factory):
    async with session_factory() as session:
        await session.execute(
            insert(products_tbl),
            [
                {"id": "mug", "title": "Кружка", "price": Decimal("29.99"), "stock": 10},
                {"id": "tee", "title": "Футболка", "price": Decimal("15.00"), "stock": 3},
            ]
        )
        await session.commit()
    return UnitOfWork(session_factory)


def _order(address, owner_id="user-1", key=None):
    now = datetime.now(timezone.utc)
    return Order(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        total_amount=Decimal("59.98"),
        address=ShippingAddress.model_validate(address),
        status=OrderStatus.PENDING,
        idempotency_key=key,
        created_at=now,
        updated_at=now,
    )


async def _stock(uow, product_id):
    async with uow() as tx:
        return (await tx.products.get_by_id(product_id)).stock


class TestProductRepository:
    async def test_get_by_ids_skips_unknown(self, sql_uow):
        async with sql_uow() as tx:
            products = await tx.products.get_by_ids(["mug", "ghost"])
        assert set(products) == {"mug"}
        assert products["mug"].price == Decimal("29.99")

    async def test_conditional_decrement(self, sql_uow):
        async with sql_uow() as tx:
            assert await tx.products.decrement_stock("tee", 2) is True
            assert await tx.products.decrement_stock("tee", 2) is False
            await tx.commit()
        assert await _stock(sql_uow, "tee") == 1

    async def test_decrement_rejected_in_second_session(self, sql_uow):
        async with sql_uow() as tx:
            assert await tx.products.decrement_stock("tee", 3) is True
            await tx.commit()
        async with sql_uow() as tx:
            assert await tx.products.decrement_stock("tee", 3) is False
            await tx.commit()
        assert await _stock(sql_uow, "tee") == 0

    async def test_decrement_is_rolled_back_without_commit(self, sql_uow):
        async with sql_uow() as tx:
            assert await tx.products.decrement_stock("mug", 4) is True
        assert await _stock(sql_uow, "mug") == 10


class TestCartRepository:
    async def test_add_increments_existing_line(self, sql_uow):
        async with sql_uow() as tx:
            first = await tx.cart.add("user-1", "mug")
            second = await tx.cart.add("user-1", "mug")
            await tx.commit()
        assert second.id == first.id
        assert second.quantity == 2
        async with sql_uow() as tx:
            assert len(await tx.cart.list_by_owner("user-1")) == 1

    async def test_set_quantity_and_delete_are_owner_scoped(self, sql_uow):
        async with sql_uow() as tx:
            line = await tx.cart.add("user-1", "mug")
            assert await tx.cart.set_quantity("user-2", line.id, 5) is None
            assert await tx.cart.delete("user-2", line.id) is False
            updated = await tx.cart.set_quantity("user-1", line.id, 5)
            await tx.commit()
        assert updated.quantity == 5

    async def test_clear(self, sql_uow):
        async with sql_uow() as tx:
            await tx.cart.add("user-1", "mug")
            await tx.cart.add("user-1", "tee")
            await tx.cart.add("user-2", "tee")
            assert await tx.cart.clear("user-1") == 2
            await tx.commit()
        async with sql_uow() as tx:
            assert await tx.cart.list_by_owner("user-1") == []
            assert len(await tx.cart.list_by_owner("user-2")) == 1


class TestOrderRepository:
    async def test_create_and_read_back(self, sql_uow, address):
        order = _order(address)
        item = OrderItem(id="item-1", order_id=order.id, product_id="mug", quantity=2, price_at_purchase=Decimal("29.99"))
        async with sql_uow() as tx:
            await tx.orders.create(order)
            await tx.orders.create_items([item])
            await tx.commit()

        async with sql_uow() as tx:
            stored = await tx.orders.get_by_id(order.id)
        assert stored.status == OrderStatus.PENDING
        assert stored.total_amount == Decimal("59.98")
        assert stored.address.zip_code == address["zipCode"]
        assert stored.items == [item]
        assert stored.items_total() == stored.total_amount

    async def test_delete_is_idempotent(self, sql_uow, address):
        order = _order(address)
        async with sql_uow() as tx:
            await tx.orders.create(order)
            await tx.commit()
        for _ in range(2):
            async with sql_uow() as tx:
                await tx.orders.delete(order.id)
                await tx.commit()
        async with sql_uow() as tx:
            assert await tx.orders.get_by_id(order.id) is None
            await tx.orders.delete("never-existed")

    async def test_duplicate_idempotency_key(self, sql_uow, address):
        async with sql_uow() as tx:
            await tx.orders.create(_order(address, key="k-1"))
            await tx.commit()
        with pytest.raises(DuplicateOrderError):
            async with sql_uow() as tx:
                await tx.orders.create(_order(address, key="k-1"))
        async with sql_uow() as tx:
            await tx.orders.create(_order(address, owner_id="user-2", key="k-1"))
            await tx.commit()

    async def test_list_by_owner(self, sql_uow, address):
        async with sql_uow() as tx:
            await tx.orders.create(_order(address))
            await tx.orders.create(_order(address, owner_id="user-2"))
            await tx.commit()
        async with sql_uow() as tx:
            orders = await tx.orders.list_by_owner("user-1")
        assert [o.owner_id for o in orders] == ["user-1"]


async def test_sqlalchemy_errors_become_storage_errors(sql_uow, address):
    order = _order(address)
    with pytest.raises(StorageError):
        async with sql_uow() as tx:
            await tx.orders.create(order)
            await tx.orders.create(order)


class TestCheckoutOnDatabase:
    async def test_scenario_a(self, sql_uow, session_factory, address):
        async with sql_uow() as tx:
            await tx.cart.add("user-1", "mug", 2)
            await tx.cart.add("user-1", "tee")
            await tx.commit()

        result = await CheckoutUseCase(sql_uow)(CheckoutDTO(owner_id="user-1", address=address))

        assert result.total_amount == Decimal("74.98")
        assert await _stock(sql_uow, "mug") == 8
        assert await _stock(sql_uow, "tee") == 2
        async with sql_uow() as tx:
            assert await tx.cart.list_by_owner("user-1") == []
            order = await tx.orders.get_by_id(result.order_id)
        assert order.items_total() == order.total_amount == Decimal("74.98")

    async def test_scenario_b(self, sql_uow, session_factory, address):
        async with sql_uow() as tx:
            await tx.cart.add("user-1", "tee", 5)
            await tx.commit()

        with pytest.raises(InsufficientStockError) as exc:
            await CheckoutUseCase(sql_uow)(CheckoutDTO(owner_id="user-1", address=address))

        assert exc.value.available == 3
        assert await _stock(sql_uow, "tee") == 3
        async with session_factory() as session:
            assert (await session.execute(select(orders_tbl))).fetchall() == []
            assert (await session.execute(select(order_items_tbl))).fetchall() == []
        async with sql_uow() as tx:
            assert [line.quantity for line in await tx.cart.list_by_owner("user-1")] == [5]

    async def test_scenario_c_second_decrement_rejected(self, sql_uow, session_factory, address, monkeypatch):
        async with sql_uow() as tx:
            await tx.cart.add("user-1", "tee", 3)
            await tx.cart.add("user-2", "tee", 3)
            await tx.commit()

        first = CheckoutUseCase(sql_uow)
        adjust_stock = first._adjust_stock
        rival = {}

        # Вторая попытка проходит целиком после проверки остатков первой
        async def after_rival(priced):
            rival["result"] = await CheckoutUseCase(sql_uow)(CheckoutDTO(owner_id="user-2", address=address))
            await adjust_stock(priced)

        monkeypatch.setattr(first, "_adjust_stock", after_rival)

        with pytest.raises(InsufficientStockError) as exc:
            await first(CheckoutDTO(owner_id="user-1", address=address))

        assert exc.value.available == 0
        assert await _stock(sql_uow, "tee") == 0
        async with session_factory() as session:
            orders = (await session.execute(select(orders_tbl.c.id, orders_tbl.c.owner_id))).fetchall()
        assert [tuple(row) for row in orders] == [(rival["result"].order_id, "user-2")]
        async with sql_uow() as tx:
            assert [line.quantity for line in await tx.cart.list_by_owner("user-1")] == [3]
            assert await tx.cart.list_by_owner("user-2") == []
