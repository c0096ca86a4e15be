from typing import List, Optional

from storefront.domain.models import Order
from storefront.domain.exceptions import OrderNotFoundError, UnauthorizedError


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, owner_id: Optional[str], order_id: str) -> Order:
        if not owner_id:
            raise UnauthorizedError("Пользователь не авторизован")
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            # Чужой заказ неотличим от несуществующего
            if not order or order.owner_id != owner_id:
                raise OrderNotFoundError(f"Заказ {order_id} не найден")
            return order


class ListOrdersUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, owner_id: Optional[str]) -> List[Order]:
        if not owner_id:
            raise UnauthorizedError("Пользователь не авторизован")
        async with self._uow() as uow:
            return await uow.orders.list_by_owner(owner_id)
