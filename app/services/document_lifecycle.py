"""Status machines for quotations, sales orders and invoices.

All functions are pure: they look at the current status (and for quotations
the validity date) and either return the resulting status or raise
``ConflictError``. Persisting the result is the caller's job.
"""
from __future__ import annotations

from datetime import date

from app.errors import ConflictError
from app.models import InvoiceStatus, QuotationStatus, SalesOrderStatus

QUOTATION_TRANSITIONS: dict[QuotationStatus, frozenset[QuotationStatus]] = {
    QuotationStatus.DRAFT: frozenset({QuotationStatus.SENT}),
    QuotationStatus.SENT: frozenset({QuotationStatus.ACCEPTED, QuotationStatus.REJECTED, QuotationStatus.EXPIRED}),
    QuotationStatus.ACCEPTED: frozenset(),
    QuotationStatus.REJECTED: frozenset(),
    QuotationStatus.EXPIRED: frozenset(),
}

ORDER_TRANSITIONS: dict[SalesOrderStatus, frozenset[SalesOrderStatus]] = {
    SalesOrderStatus.NEW: frozenset({SalesOrderStatus.PROCESSING, SalesOrderStatus.CANCELLED}),
    SalesOrderStatus.PROCESSING: frozenset({SalesOrderStatus.DELIVERED, SalesOrderStatus.CANCELLED}),
    SalesOrderStatus.DELIVERED: frozenset({SalesOrderStatus.COMPLETED, SalesOrderStatus.CANCELLED}),
    SalesOrderStatus.COMPLETED: frozenset(),
    SalesOrderStatus.CANCELLED: frozenset(),
}


def effective_quotation_status(status: QuotationStatus, valid_until: date | None, today: date) -> QuotationStatus:
    if status == QuotationStatus.SENT and valid_until is not None and valid_until < today:
        return QuotationStatus.EXPIRED
    return status


def check_quotation_transition(
    current: QuotationStatus,
    target: QuotationStatus,
    *,
    item_count: int,
) -> QuotationStatus:
    if target not in QUOTATION_TRANSITIONS[current]:
        raise ConflictError(f'Quotation cannot move from {current.value} to {target.value}')
    if target == QuotationStatus.SENT and item_count < 1:
        raise ConflictError('Quotation needs at least one item before it can be sent')
    return target


def ensure_quotation_editable(status: QuotationStatus) -> None:
    if status != QuotationStatus.DRAFT:
        raise ConflictError(f'Quotation is {status.value} and can no longer be edited')


def check_order_transition(current: SalesOrderStatus, target: SalesOrderStatus) -> SalesOrderStatus:
    if target not in ORDER_TRANSITIONS[current]:
        raise ConflictError(f'Sales order cannot move from {current.value} to {target.value}')
    return target


def ensure_order_editable(status: SalesOrderStatus) -> None:
    if status != SalesOrderStatus.NEW:
        raise ConflictError(f'Sales order is {status.value} and can no longer be edited')


def ensure_order_billable(status: SalesOrderStatus) -> None:
    if status == SalesOrderStatus.CANCELLED:
        raise ConflictError('Cancelled sales orders cannot be invoiced')


def next_invoice_status(current: InvoiceStatus) -> tuple[InvoiceStatus, bool]:
    """Return the status after a mark-paid request and whether anything changed."""
    if current == InvoiceStatus.PAID:
        return InvoiceStatus.PAID, False
    return InvoiceStatus.PAID, True
