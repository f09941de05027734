from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth import Principal
from app.errors import NotFoundError
from app.models import DocumentType, Invoice, InvoiceStatus, SalesOrder
from app.policy import Operation, enforce
from app.services.document_lifecycle import ensure_order_billable, next_invoice_status
from app.services.document_number_service import allocate_document_number
from app.services.document_service import get_sales_order

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _invoice_for_order(db: Session, order_id: int) -> Invoice | None:
    return db.execute(select(Invoice).where(Invoice.sales_order_id == order_id)).scalar_one_or_none()


def get_invoice(db: Session, *, invoice_id: int) -> Invoice:
    invoice = db.execute(select(Invoice).where(Invoice.id == invoice_id)).scalar_one_or_none()
    if not invoice:
        raise NotFoundError('Invoice not found')
    return invoice


def read_invoice(db: Session, *, actor: Principal, invoice_id: int) -> Invoice:
    enforce(actor, Operation.DOCUMENT_READ)
    return get_invoice(db, invoice_id=invoice_id)


def list_invoices(
    db: Session,
    *,
    actor: Principal,
    status: InvoiceStatus | None = None,
    limit: int = 100,
) -> list[dict]:
    enforce(actor, Operation.DOCUMENT_READ)
    query = (
        select(Invoice, SalesOrder.order_number)
        .join(SalesOrder, SalesOrder.id == Invoice.sales_order_id)
        .order_by(Invoice.issued_at.desc(), Invoice.id.desc())
        .limit(limit)
    )
    if status is not None:
        query = query.where(Invoice.status == status)
    return [invoice_detail(invoice, order_number=order_number) for invoice, order_number in db.execute(query).all()]


def invoice_detail(invoice: Invoice, *, order_number: str | None = None) -> dict:
    return {
        'id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'sales_order_id': invoice.sales_order_id,
        'order_number': order_number,
        'status': invoice.status.value,
        'total': invoice.total,
        'issued_at': invoice.issued_at,
        'paid_at': invoice.paid_at,
    }


def ensure_invoice(db: Session, *, actor: Principal, order_id: int) -> tuple[Invoice, bool]:
    """Return the order's invoice, creating it on first billing access.

    The invoice total is frozen at creation and never follows later order edits.
    """
    order = get_sales_order(db, order_id=order_id)
    enforce(actor, Operation.INVOICE_CREATE, order)

    existing = _invoice_for_order(db, order.id)
    if existing:
        return existing, False
    ensure_order_billable(order.status)

    try:
        with db.begin_nested():
            invoice = Invoice(
                invoice_number=allocate_document_number(db, document_type=DocumentType.INVOICE),
                sales_order_id=order.id,
                status=InvoiceStatus.UNPAID,
                total=order.total,
                issued_at=_now(),
                created_by=actor.id,
            )
            db.add(invoice)
            db.flush()
    except IntegrityError:
        # Another request invoiced the order first.
        existing = _invoice_for_order(db, order.id)
        if existing is None:
            raise
        return existing, False

    logger.info('Invoice %s issued for sales order %s (total %s)', invoice.invoice_number, order.order_number, invoice.total)
    return invoice, True


def mark_invoice_paid(db: Session, *, actor: Principal, invoice_id: int) -> Invoice:
    invoice = get_invoice(db, invoice_id=invoice_id)
    enforce(actor, Operation.INVOICE_MARK_PAID, invoice)

    status, changed = next_invoice_status(invoice.status)
    if not changed:
        return invoice
    invoice.status = status
    invoice.paid_at = _now()
    invoice.paid_by = actor.id
    db.flush()
    logger.info('Invoice %s marked paid by user %s', invoice.invoice_number, actor.id)
    return invoice
