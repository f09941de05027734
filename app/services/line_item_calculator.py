from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.errors import ValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class LineItemInput:
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal = ZERO


@dataclass(frozen=True)
class LineResult:
    subtotal: Decimal
    tax: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal


def to_money(value: Decimal | int | str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f'Invalid amount: {value!r}') from exc
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_line(item: LineItemInput) -> None:
    if isinstance(item.quantity, bool) or not isinstance(item.quantity, int):
        raise ValidationError('Quantity must be a whole number', field='quantity')
    if item.quantity <= 0:
        raise ValidationError('Quantity must be greater than zero', field='quantity')
    if Decimal(item.unit_price) < 0:
        raise ValidationError('Unit price cannot be negative', field='unit_price')
    rate = Decimal(item.tax_rate)
    if rate < 0 or rate > HUNDRED:
        raise ValidationError('Tax rate must be between 0 and 100', field='tax_rate')


def validate_discount(discount: Decimal | None) -> None:
    if discount is None:
        raise ValidationError('Discount is required', field='discount')
    if Decimal(discount) < 0:
        raise ValidationError('Discount cannot be negative', field='discount')


def compute_line(item: LineItemInput) -> LineResult:
    validate_line(item)
    subtotal = to_money(Decimal(item.quantity) * Decimal(item.unit_price))
    # Line tax stays unrounded; rounding happens once on the document sum.
    tax = subtotal * Decimal(item.tax_rate) / HUNDRED
    return LineResult(subtotal=subtotal, tax=tax)


def compute_document_totals(items: Iterable[LineItemInput], *, discount: Decimal = ZERO) -> DocumentTotals:
    validate_discount(discount)
    subtotal = ZERO
    tax = Decimal('0')
    for item in items:
        line = compute_line(item)
        subtotal += line.subtotal
        tax += line.tax

    discount_amount = to_money(discount)
    tax_amount = to_money(tax)
    return DocumentTotals(
        subtotal=to_money(subtotal),
        tax=tax_amount,
        discount=discount_amount,
        total=to_money(subtotal - discount_amount + tax_amount),
    )
