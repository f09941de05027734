from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.models import Quotation, QuotationItem, SalesOrder, SalesOrderItem
from app.services.document_lifecycle import effective_quotation_status
from app.services.line_item_calculator import (
    ZERO,
    DocumentTotals,
    LineItemInput,
    compute_document_totals,
    compute_line,
    to_money,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineItemData:
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal = ZERO
    product_id: int | None = None
    description: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _today() -> date:
    return _now().date()


def item_values(data: LineItemData) -> dict:
    line = compute_line(LineItemInput(quantity=data.quantity, unit_price=data.unit_price, tax_rate=data.tax_rate))
    return {
        'product_id': data.product_id,
        'description': (data.description or '').strip() or None,
        'quantity': data.quantity,
        'unit_price': to_money(data.unit_price),
        'tax_rate': to_money(data.tax_rate),
        'subtotal': line.subtotal,
    }


def line_inputs(items: Sequence[QuotationItem | SalesOrderItem]) -> list[LineItemInput]:
    return [
        LineItemInput(quantity=item.quantity, unit_price=item.unit_price, tax_rate=item.tax_rate)
        for item in items
    ]


def apply_totals(document: Quotation | SalesOrder, totals: DocumentTotals) -> None:
    document.subtotal = totals.subtotal
    document.tax = totals.tax
    document.discount = totals.discount
    document.total = totals.total
    document.updated_at = _now()


def get_quotation(db: Session, *, quotation_id: int, today: date | None = None) -> Quotation:
    quotation = db.execute(select(Quotation).where(Quotation.id == quotation_id)).scalar_one_or_none()
    if not quotation:
        raise NotFoundError('Quotation not found')
    apply_lazy_expiry(db, [quotation], today=today)
    return quotation


def apply_lazy_expiry(db: Session, quotations: Sequence[Quotation], *, today: date | None = None) -> None:
    """Persist SENT -> EXPIRED for quotations read after their validity date."""
    today = today or _today()
    expired = False
    for quotation in quotations:
        status = effective_quotation_status(quotation.status, quotation.valid_until, today)
        if status == quotation.status:
            continue
        logger.info('Quotation %s expired (valid until %s)', quotation.number, quotation.valid_until)
        quotation.status = status
        quotation.updated_at = _now()
        expired = True
    if expired:
        db.flush()


def list_quotation_items(db: Session, *, quotation_id: int) -> list[QuotationItem]:
    return db.execute(
        select(QuotationItem)
        .where(QuotationItem.quotation_id == quotation_id)
        .order_by(QuotationItem.position.asc(), QuotationItem.id.asc())
    ).scalars().all()


def get_quotation_item(db: Session, *, quotation_id: int, item_id: int) -> QuotationItem:
    item = db.execute(
        select(QuotationItem).where(QuotationItem.id == item_id, QuotationItem.quotation_id == quotation_id)
    ).scalar_one_or_none()
    if not item:
        raise NotFoundError('Quotation item not found')
    return item


def recalculate_quotation_totals(db: Session, quotation: Quotation) -> DocumentTotals:
    db.flush()
    items = list_quotation_items(db, quotation_id=quotation.id)
    totals = compute_document_totals(line_inputs(items), discount=quotation.discount)
    apply_totals(quotation, totals)
    db.flush()
    return totals


def get_sales_order(db: Session, *, order_id: int) -> SalesOrder:
    order = db.execute(select(SalesOrder).where(SalesOrder.id == order_id)).scalar_one_or_none()
    if not order:
        raise NotFoundError('Sales order not found')
    return order


def list_order_items(db: Session, *, order_id: int) -> list[SalesOrderItem]:
    return db.execute(
        select(SalesOrderItem)
        .where(SalesOrderItem.sales_order_id == order_id)
        .order_by(SalesOrderItem.position.asc(), SalesOrderItem.id.asc())
    ).scalars().all()


def get_order_item(db: Session, *, order_id: int, item_id: int) -> SalesOrderItem:
    item = db.execute(
        select(SalesOrderItem).where(SalesOrderItem.id == item_id, SalesOrderItem.sales_order_id == order_id)
    ).scalar_one_or_none()
    if not item:
        raise NotFoundError('Sales order item not found')
    return item


def recalculate_order_totals(db: Session, order: SalesOrder) -> DocumentTotals:
    db.flush()
    items = list_order_items(db, order_id=order.id)
    totals = compute_document_totals(line_inputs(items), discount=order.discount)
    apply_totals(order, totals)
    db.flush()
    return totals


def next_position(items: Sequence[QuotationItem | SalesOrderItem]) -> int:
    if not items:
        return 0
    return max(item.position for item in items) + 1
