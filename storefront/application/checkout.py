import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, ValidationError

from storefront.domain.models import CartLine, Order, OrderStatus, PricedLine, Product, ShippingAddress
from storefront.domain.exceptions import (
    CheckoutInProgressError,
    DuplicateOrderError,
    EmptyCartError,
    InsufficientStockError,
    InvalidAddressError,
    ProductUnavailableError,
    StorageError,
    UnauthorizedError,
)
from storefront.domain.pricing import TAX_RATE, calculate_totals
from storefront.application.saga import Saga, SagaFailed


logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("email", "firstName", "lastName", "address", "city", "state", "zipCode", "country")


class CheckoutState(str, Enum):
    START = "start"
    CART_LOADED = "cart_loaded"
    VALIDATED = "validated"
    ORDER_CREATED = "order_created"
    ITEMS_CREATED = "items_created"
    STOCK_ADJUSTED = "stock_adjusted"
    CART_CLEARED = "cart_cleared"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class CheckoutAttempt:
    """Состояние одной попытки оформления заказа"""
    owner_id: Optional[str] = None
    state: CheckoutState = CheckoutState.START
    history: List[CheckoutState] = field(default_factory=lambda: [CheckoutState.START])
    order_id: Optional[str] = None
    compensated: bool = False
    failure: Optional[Exception] = None

    def advance(self, state: CheckoutState) -> None:
        self.state = state
        self.history.append(state)
        logger.info(f"[checkout] {self.owner_id}: {state.value}")

    def fail(self, error: Exception) -> None:
        self.failure = error
        self.advance(CheckoutState.FAILED)


class CheckoutDTO(BaseModel):
    owner_id: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    idempotency_key: Optional[str] = None


class CheckoutResult(BaseModel):
    order_id: str
    total_amount: Decimal
    status: OrderStatus

    @classmethod
    def from_domain(cls, order: Order) -> "CheckoutResult":
        return cls(order_id=order.id, total_amount=order.total_amount, status=order.status)


class CheckoutUseCase:
    """Превращает корзину пользователя в заказ со статусом pending.

    Последовательность: проверка входа -> загрузка корзины -> проверка по
    каталогу и расчет суммы -> заказ с позициями -> списание остатков ->
    очистка корзины. Заказ и позиции пишутся одной транзакцией: сбой записи
    позиций откатывает и заказ. Если остатка не хватило в момент списания,
    заказ компенсируется удалением. Сбой хранилища при списании или очистке
    корзины только логируется.
    """

    def __init__(self, unit_of_work, tax_rate: Decimal = TAX_RATE):
        self._uow = unit_of_work
        self._tax_rate = tax_rate
        self.attempt = CheckoutAttempt()

    async def __call__(self, dto: CheckoutDTO) -> CheckoutResult:
        self.attempt = CheckoutAttempt(owner_id=dto.owner_id)
        try:
            return await self._checkout(dto)
        except Exception as e:
            self.attempt.fail(e)
            logger.info(f"[checkout] {dto.owner_id}: попытка завершилась ошибкой {type(e).__name__}: {e}")
            raise

    async def _checkout(self, dto: CheckoutDTO) -> CheckoutResult:
        # 1. Проверка входа: до любого обращения к хранилищу
        if not dto.owner_id:
            raise UnauthorizedError("Пользователь не авторизован")
        owner_id = dto.owner_id
        address = self._parse_address(dto.address)
        logger.info(f"[checkout] Оформление заказа для пользователя {owner_id}")

        # 2. Проверка идемпотентности
        if dto.idempotency_key:
            existing = await self._find_existing(owner_id, dto.idempotency_key)
            if existing:
                logger.info(f"[checkout] Заказ уже существует: {existing.id}")
                return self._reuse(existing)

        # 3. Корзина вместе с актуальными данными каталога
        lines, products = await self._load_cart(owner_id)
        self.attempt.advance(CheckoutState.CART_LOADED)

        # 4. Проверка и расчет суммы только по ценам каталога
        priced = [PricedLine.from_catalog(line, products.get(line.product_id)) for line in lines]
        totals = calculate_totals(((p.price_at_purchase, p.quantity) for p in priced), self._tax_rate)
        self.attempt.advance(CheckoutState.VALIDATED)
        logger.info(f"[checkout] Сумма заказа: {totals.subtotal} (налог {totals.tax}, итого {totals.total})")

        now = datetime.now(timezone.utc)
        order = Order(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            total_amount=totals.subtotal,
            address=address,
            status=OrderStatus.PENDING,
            idempotency_key=dto.idempotency_key,
            created_at=now,
            updated_at=now,
        )
        items = [p.to_order_item(str(uuid.uuid4()), order.id) for p in priced]

        saga = (
            Saga("checkout")
            .step("create_order", lambda: self._create_order(order, items), compensate=lambda: self._delete_order(order.id))
            .step("adjust_stock", lambda: self._adjust_stock(priced))
            .step("clear_cart", lambda: self._clear_cart(owner_id))
        )
        try:
            await saga.run()
        except SagaFailed as e:
            self.attempt.compensated = e.outcome.compensated
            if isinstance(e.error, DuplicateOrderError):
                return await self._resolve_duplicate(e.error)
            if isinstance(e.error, StorageError):
                logger.error(
                    f"[checkout] Ошибка записи заказа на шаге '{e.outcome.step_failed}': {e.error}",
                    exc_info=e.error
                )
            # Причина сбоя хранилища остается в __cause__
            raise e.error from e.error.__cause__

        self.attempt.advance(CheckoutState.COMPLETE)
        logger.info(f"[checkout] Заказ оформлен: {order.id}")
        return CheckoutResult.from_domain(order)

    @staticmethod
    def _parse_address(raw: Optional[Dict[str, Any]]) -> ShippingAddress:
        if not raw:
            raise InvalidAddressError(REQUIRED_ADDRESS_FIELDS)
        try:
            return ShippingAddress.model_validate(raw)
        except ValidationError as e:
            fields = [str(err["loc"][0]) for err in e.errors() if err.get("loc")]
            raise InvalidAddressError(fields or REQUIRED_ADDRESS_FIELDS)

    async def _find_existing(self, owner_id: str, key: str) -> Optional[Order]:
        async with self._uow() as uow:
            return await uow.orders.get_by_idempotency_key(owner_id, key)

    async def _load_cart(self, owner_id: str) -> Tuple[List[CartLine], Dict[str, Product]]:
        async with self._uow() as uow:
            lines = await uow.cart.list_by_owner(owner_id)
            if not lines:
                raise EmptyCartError(owner_id)
            products = await uow.products.get_by_ids([line.product_id for line in lines])
        logger.info(f"[checkout] В корзине {len(lines)} позиций")
        return lines, products

    async def _create_order(self, order: Order, items) -> None:
        """Заказ и его позиции пишутся одной транзакцией: заказ без позиций не фиксируется"""
        async with self._uow() as uow:
            await uow.orders.create(order)
            self.attempt.order_id = order.id
            self.attempt.advance(CheckoutState.ORDER_CREATED)
            await uow.orders.create_items(items)
            await uow.commit()
        order.items = list(items)
        self.attempt.advance(CheckoutState.ITEMS_CREATED)

    async def _delete_order(self, order_id: str) -> None:
        async with self._uow() as uow:
            await uow.orders.delete(order_id)
            await uow.commit()
        logger.warning(f"[checkout] Заказ {order_id} удален (компенсация)")

    async def _adjust_stock(self, priced: List[PricedLine]) -> None:
        """Списание остатков одной транзакцией: отказ по любой строке откатывает все строки"""
        try:
            async with self._uow() as uow:
                for line in priced:
                    if await uow.products.decrement_stock(line.product_id, line.quantity):
                        continue
                    product = await uow.products.get_by_id(line.product_id)
                    if product is None:
                        raise ProductUnavailableError(line.product_id)
                    raise InsufficientStockError(line.product_id, product.stock, line.quantity, title=product.title)
                await uow.commit()
        except StorageError as e:
            logger.error(f"[checkout] Не удалось списать остатки по заказу {self.attempt.order_id}: {e}", exc_info=True)
            return
        self.attempt.advance(CheckoutState.STOCK_ADJUSTED)

    async def _clear_cart(self, owner_id: str) -> None:
        # Остатки уже списаны: любая ошибка здесь не отменяет заказ
        try:
            async with self._uow() as uow:
                removed = await uow.cart.clear(owner_id)
                await uow.commit()
        except Exception as e:
            logger.error(f"[checkout] Не удалось очистить корзину пользователя {owner_id}: {e}", exc_info=True)
            return
        logger.info(f"[checkout] Корзина очищена, удалено строк: {removed}")
        self.attempt.advance(CheckoutState.CART_CLEARED)

    async def _resolve_duplicate(self, error: DuplicateOrderError) -> CheckoutResult:
        existing = await self._find_existing(error.owner_id, error.idempotency_key)
        if existing is None:
            # Параллельная попытка откатилась: повтор оформит заказ заново
            raise CheckoutInProgressError(error.idempotency_key)
        logger.info(f"[checkout] Параллельный повтор, возвращаем заказ {existing.id}")
        return self._reuse(existing)

    def _reuse(self, existing: Order) -> CheckoutResult:
        # Заказ без позиций принадлежит попытке, которая еще не зафиксирована
        if not existing.items:
            raise CheckoutInProgressError(existing.idempotency_key)
        self.attempt.order_id = existing.id
        self.attempt.advance(CheckoutState.COMPLETE)
        return CheckoutResult.from_domain(existing)
