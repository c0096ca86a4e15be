from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple
from pydantic import BaseModel

TAX_RATE = Decimal("0.08")
CENT = Decimal("0.01")


class Totals(BaseModel):
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    total_items: int


def to_money(value) -> Decimal:
    """Приведение к копейкам (центам), округление половины вверх"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_totals(lines: Iterable[Tuple[Decimal, int]], tax_rate: Decimal = TAX_RATE) -> Totals:
    """Подытог, налог и итог по парам (цена, количество).

    Суммирование идет в Decimal без промежуточного округления, поэтому
    результат не зависит от порядка строк. Округляется только налог.
    """
    subtotal = Decimal("0")
    total_items = 0
    for unit_price, quantity in lines:
        price = Decimal(str(unit_price))
        if price < 0:
            raise ValueError(f"Цена не может быть отрицательной: {unit_price}")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValueError(f"Количество должно быть целым числом >= 1: {quantity}")
        subtotal += price * quantity
        total_items += quantity

    tax = to_money(subtotal * Decimal(str(tax_rate)))
    return Totals(
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
        total_items=total_items,
    )
