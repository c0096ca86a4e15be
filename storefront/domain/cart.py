from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from storefront.domain.pricing import TAX_RATE, Totals, calculate_totals


class LocalCart:
    """Оптимистичная клиентская корзина.

    Те же правила, что у серверной: одна строка на товар, количество <= 0
    удаляет строку. Строки хранятся в порядке первого добавления.
    """

    def __init__(self):
        self._quantities: Dict[str, int] = {}
        self._prices: Dict[str, Decimal] = {}

    @classmethod
    def from_snapshot(cls, items) -> "LocalCart":
        """Свертка снимка корзины: при повторе товара побеждает последняя запись"""
        cart = cls()
        for item in items:
            cart.set_quantity(item.product_id, item.quantity)
        return cart

    def set_quantity(self, product_id: str, quantity: int, price: Optional[Decimal] = None) -> None:
        if quantity <= 0:
            self.remove(product_id)
            return
        self._quantities[product_id] = quantity
        if price is not None:
            self._prices[product_id] = price

    def remove(self, product_id: str) -> None:
        self._quantities.pop(product_id, None)
        self._prices.pop(product_id, None)

    def lines(self) -> List[Tuple[str, int]]:
        return list(self._quantities.items())

    def totals(self, tax_rate: Decimal = TAX_RATE) -> Totals:
        """Итоги по известным ценам; строки без цены не учитываются"""
        return calculate_totals(
            ((self._prices[pid], qty) for pid, qty in self._quantities.items() if pid in self._prices),
            tax_rate,
        )
