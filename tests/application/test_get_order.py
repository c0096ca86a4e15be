import pytest

from storefront.application.checkout import CheckoutDTO, CheckoutUseCase
from storefront.application.get_order import GetOrderUseCase, ListOrdersUseCase
from storefront.domain.exceptions import OrderNotFoundError, UnauthorizedError


@pytest.fixture
async def placed_order(uow, storage, address):
    storage.add_product("mug", "29.99", 10)
    storage.add_line("user-1", "mug", 2)
    return await CheckoutUseCase(uow)(CheckoutDTO(owner_id="user-1", address=address))


async def test_get_own_order(uow, placed_order):
    order = await GetOrderUseCase(uow)("user-1", placed_order.order_id)
    assert order.id == placed_order.order_id
    assert len(order.items) == 1
    assert order.items_total() == order.total_amount


async def test_foreign_order_looks_missing(uow, placed_order):
    with pytest.raises(OrderNotFoundError):
        await GetOrderUseCase(uow)("user-2", placed_order.order_id)


async def test_unknown_order(uow):
    with pytest.raises(OrderNotFoundError):
        await GetOrderUseCase(uow)("user-1", "missing")


async def test_list_orders_scoped_by_owner(uow, placed_order):
    assert [o.id for o in await ListOrdersUseCase(uow)("user-1")] == [placed_order.order_id]
    assert await ListOrdersUseCase(uow)("user-2") == []


async def test_list_requires_owner(uow):
    with pytest.raises(UnauthorizedError):
        await ListOrdersUseCase(uow)("")
