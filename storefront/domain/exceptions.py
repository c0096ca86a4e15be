from typing import Iterable, Optional


class DomainException(Exception):
    pass


class UnauthorizedError(DomainException):
    pass


class InvalidAddressError(DomainException):
    def __init__(self, fields: Iterable[str]):
        self.fields = sorted(set(fields))
        super().__init__(f"Некорректный адрес доставки. Не заполнены поля: {', '.join(self.fields)}")


class BusinessRuleError(DomainException):
    """Нарушение бизнес-правила: проверяется до любой записи в хранилище"""
    pass


class EmptyCartError(BusinessRuleError):
    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__("Корзина пуста")


class ProductUnavailableError(BusinessRuleError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Товар {product_id} не найден")


class InsufficientStockError(BusinessRuleError):
    def __init__(self, product_id: str, available: int, required: int, title: Optional[str] = None):
        self.product_id = product_id
        self.title = title
        self.available = available
        self.required = required
        name = title or product_id
        super().__init__(f'Недостаточно товара "{name}". Доступно: {available}, требуется: {required}')


class CartLineNotFoundError(DomainException):
    pass


class OrderNotFoundError(DomainException):
    pass


class DuplicateOrderError(DomainException):
    def __init__(self, owner_id: str, idempotency_key: str):
        self.owner_id = owner_id
        self.idempotency_key = idempotency_key
        super().__init__(f"Заказ с ключом идемпотентности {idempotency_key} уже существует")


class CheckoutInProgressError(DomainException):
    """Заказ с этим ключом еще оформляется или его попытка откатилась; запрос можно повторить"""

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Заказ с ключом {idempotency_key} еще оформляется, повторите запрос позже")


class StorageError(DomainException):
    pass


class IdentityServiceError(DomainException):
    pass
