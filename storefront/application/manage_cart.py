import logging
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel

from storefront.domain.cart import LocalCart
from storefront.domain.models import CartLine, Product
from storefront.domain.exceptions import CartLineNotFoundError, ProductUnavailableError, UnauthorizedError
from storefront.domain.pricing import TAX_RATE, Totals


logger = logging.getLogger(__name__)


class CartLineView(BaseModel):
    line: CartLine
    product: Optional[Product] = None


class CartView(BaseModel):
    owner_id: str
    lines: List[CartLineView]
    totals: Totals


class CartSnapshotItem(BaseModel):
    product_id: str
    quantity: int


def _require_owner(owner_id: Optional[str]) -> str:
    if not owner_id:
        raise UnauthorizedError("Пользователь не авторизован")
    return owner_id


async def _build_view(uow, owner_id: str, tax_rate: Decimal) -> CartView:
    lines = await uow.cart.list_by_owner(owner_id)
    products = await uow.products.get_by_ids([line.product_id for line in lines]) if lines else {}
    views = [CartLineView(line=line, product=products.get(line.product_id)) for line in lines]
    # Строки с исчезнувшим товаром показываются, но в итоги не входят
    priced = LocalCart()
    for v in views:
        if v.product is not None:
            priced.set_quantity(v.line.product_id, v.line.quantity, v.product.price)
    totals = priced.totals(tax_rate)
    return CartView(owner_id=owner_id, lines=views, totals=totals)


class GetCartUseCase:
    def __init__(self, unit_of_work, tax_rate: Decimal = TAX_RATE):
        self._uow = unit_of_work
        self._tax_rate = tax_rate

    async def __call__(self, owner_id: Optional[str]) -> CartView:
        owner_id = _require_owner(owner_id)
        async with self._uow() as uow:
            return await _build_view(uow, owner_id, self._tax_rate)


class AddToCartUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, owner_id: Optional[str], product_id: str, quantity: int = 1) -> CartLine:
        owner_id = _require_owner(owner_id)
        if quantity < 1:
            raise ValueError("Количество должно быть не меньше 1")

        async with self._uow() as uow:
            product = await uow.products.get_by_id(product_id)
            if not product:
                raise ProductUnavailableError(product_id)
            line = await uow.cart.add(owner_id, product_id, quantity)
            await uow.commit()

        logger.info(f"Товар {product_id} в корзине {owner_id}: {line.quantity} шт.")
        return line


class UpdateCartLineUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, owner_id: Optional[str], line_id: str, quantity: int) -> Optional[CartLine]:
        """Количество <= 0 удаляет строку; тогда возвращается None"""
        owner_id = _require_owner(owner_id)
        async with self._uow() as uow:
            line = await uow.cart.get(owner_id, line_id)
            if not line:
                raise CartLineNotFoundError(f"Строка корзины {line_id} не найдена")

            if quantity <= 0:
                await uow.cart.delete(owner_id, line_id)
                updated = None
            else:
                updated = await uow.cart.set_quantity(owner_id, line_id, quantity)
            await uow.commit()
        return updated


class RemoveCartLineUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, owner_id: Optional[str], line_id: str) -> bool:
        owner_id = _require_owner(owner_id)
        async with self._uow() as uow:
            removed = await uow.cart.delete(owner_id, line_id)
            await uow.commit()
        if not removed:
            logger.info(f"Строка {line_id} отсутствует в корзине {owner_id}, удалять нечего")
        return removed


class ClearCartUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, owner_id: Optional[str]) -> int:
        owner_id = _require_owner(owner_id)
        async with self._uow() as uow:
            removed = await uow.cart.clear(owner_id)
            await uow.commit()
        return removed


class SyncCartUseCase:
    """Перенос клиентской корзины на сервер: снимок целиком заменяет серверную корзину"""

    def __init__(self, unit_of_work, tax_rate: Decimal = TAX_RATE):
        self._uow = unit_of_work
        self._tax_rate = tax_rate

    async def __call__(self, owner_id: Optional[str], items: List[CartSnapshotItem]) -> CartView:
        owner_id = _require_owner(owner_id)
        local = LocalCart.from_snapshot(items)

        async with self._uow() as uow:
            products = await uow.products.get_by_ids([pid for pid, _ in local.lines()])
            await uow.cart.clear(owner_id)
            for product_id, quantity in local.lines():
                if product_id not in products:
                    logger.warning(f"Товар {product_id} отсутствует в каталоге, пропускаем при синхронизации")
                    continue
                await uow.cart.add(owner_id, product_id, quantity)
            view = await _build_view(uow, owner_id, self._tax_rate)
            await uow.commit()

        logger.info(f"Корзина {owner_id} синхронизирована: {len(view.lines)} строк")
        return view
