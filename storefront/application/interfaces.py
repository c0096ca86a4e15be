from abc import ABC, abstractmethod
from typing import Dict, Optional, List, Sequence
from storefront.domain.models import CartLine, Order, OrderItem, Product


class ProductRepository(ABC):
    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def get_by_ids(self, product_ids: Sequence[str]) -> Dict[str, Product]:
        pass

    @abstractmethod
    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """Атомарное списание: False, если остатка не хватает"""
        pass


class CartRepository(ABC):
    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> List[CartLine]:
        pass

    @abstractmethod
    async def get(self, owner_id: str, line_id: str) -> Optional[CartLine]:
        pass

    @abstractmethod
    async def add(self, owner_id: str, product_id: str, quantity: int = 1) -> CartLine:
        pass

    @abstractmethod
    async def set_quantity(self, owner_id: str, line_id: str, quantity: int) -> Optional[CartLine]:
        pass

    @abstractmethod
    async def delete(self, owner_id: str, line_id: str) -> bool:
        pass

    @abstractmethod
    async def clear(self, owner_id: str) -> int:
        pass


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, owner_id: str, key: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def create_items(self, items: List[OrderItem]) -> None:
        pass

    @abstractmethod
    async def delete(self, order_id: str) -> None:
        pass

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> List[Order]:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def products(self) -> ProductRepository:
        pass

    @property
    @abstractmethod
    def cart(self) -> CartRepository:
        pass

    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class IdentityService(ABC):
    @abstractmethod
    async def verify_token(self, token: str) -> Optional[str]:
        """Возвращает id пользователя или None для недействительного токена"""
        pass
