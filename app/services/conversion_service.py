from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth import Principal
from app.errors import ConflictError, PartialFailureError
from app.models import (
    DocumentType,
    Quotation,
    QuotationItem,
    QuotationStatus,
    SalesOrder,
    SalesOrderItem,
    SalesOrderStatus,
)
from app.policy import Operation, enforce
from app.services.document_number_service import allocate_document_number
from app.services.document_service import (
    get_quotation,
    list_quotation_items,
    recalculate_order_totals,
    recalculate_quotation_totals,
)
from app.services.quotation_service import default_valid_until

logger = logging.getLogger(__name__)


class DocumentKind(str, Enum):
    QUOTATION = 'QUOTATION'
    SALES_ORDER = 'SALES_ORDER'


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _copy_item_values(item: QuotationItem, position: int) -> dict:
    return {
        'product_id': item.product_id,
        'description': item.description,
        'quantity': item.quantity,
        'unit_price': item.unit_price,
        'tax_rate': item.tax_rate,
        'subtotal': item.subtotal,
        'position': position,
    }


def clone_document(
    db: Session,
    *,
    source: Quotation,
    target: DocumentKind,
    created_by: int,
    status_override: QuotationStatus | SalesOrderStatus | None = None,
    today: date | None = None,
) -> Quotation | SalesOrder:
    """Copy a quotation and its items into a new quotation or sales order.

    The copy gets a freshly allocated number, new item rows and totals
    recomputed from those rows. Nothing is shared with ``source`` afterwards.
    Callers run this inside a savepoint so a failed item write leaves no
    partial document behind.
    """
    today = today or _now().date()
    items = list_quotation_items(db, quotation_id=source.id)

    if target == DocumentKind.SALES_ORDER:
        document = SalesOrder(
            order_number=allocate_document_number(db, document_type=DocumentType.SALES_ORDER),
            source_quotation_id=source.id,
            company_id=source.company_id,
            contact_id=source.contact_id,
            opportunity_id=source.opportunity_id,
            discount=source.discount,
            status=status_override or SalesOrderStatus.NEW,
            order_date=today,
            notes=f'Based on quotation #{source.number}. {source.notes or ""}'.strip(),
            created_by=created_by,
        )
        db.add(document)
        db.flush()
        db.add_all(
            SalesOrderItem(sales_order_id=document.id, **_copy_item_values(item, position))
            for position, item in enumerate(items)
        )
        recalculate_order_totals(db, document)
        return document

    document = Quotation(
        number=allocate_document_number(db, document_type=DocumentType.QUOTATION),
        company_id=source.company_id,
        contact_id=source.contact_id,
        opportunity_id=source.opportunity_id,
        discount=source.discount,
        status=status_override or QuotationStatus.DRAFT,
        valid_until=default_valid_until(today),
        notes=source.notes,
        created_by=created_by,
    )
    db.add(document)
    db.flush()
    db.add_all(
        QuotationItem(quotation_id=document.id, **_copy_item_values(item, position))
        for position, item in enumerate(items)
    )
    recalculate_quotation_totals(db, document)
    return document


def _claim_for_conversion(db: Session, quotation: Quotation) -> None:
    result = db.execute(
        update(Quotation)
        .where(
            Quotation.id == quotation.id,
            Quotation.status == QuotationStatus.ACCEPTED,
            Quotation.converted_at.is_(None),
        )
        .values(converted_at=_now(), updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(f'Quotation {quotation.number} has already been converted')


def convert_quotation_to_order(
    db: Session,
    *,
    actor: Principal,
    quotation_id: int,
    today: date | None = None,
) -> SalesOrder:
    quotation = get_quotation(db, quotation_id=quotation_id, today=today)
    enforce(actor, Operation.QUOTATION_CONVERT, quotation)
    if quotation.status != QuotationStatus.ACCEPTED:
        raise ConflictError(f'Only accepted quotations can be converted; {quotation.number} is {quotation.status.value}')
    if quotation.converted_at is not None:
        raise ConflictError(f'Quotation {quotation.number} has already been converted')

    try:
        with db.begin_nested():
            _claim_for_conversion(db, quotation)
            order = clone_document(
                db,
                source=quotation,
                target=DocumentKind.SALES_ORDER,
                created_by=actor.id,
                today=today,
            )
    except SQLAlchemyError as exc:
        raise PartialFailureError(f'Converting quotation {quotation.number} failed; no order was created') from exc

    db.refresh(quotation)
    logger.info('Quotation %s converted to sales order %s by user %s', quotation.number, order.order_number, actor.id)
    return order


def duplicate_quotation(
    db: Session,
    *,
    actor: Principal,
    quotation_id: int,
    today: date | None = None,
) -> Quotation:
    source = get_quotation(db, quotation_id=quotation_id, today=today)
    enforce(actor, Operation.QUOTATION_DUPLICATE, source)

    try:
        with db.begin_nested():
            duplicate = clone_document(
                db,
                source=source,
                target=DocumentKind.QUOTATION,
                created_by=actor.id,
                status_override=QuotationStatus.DRAFT,
                today=today,
            )
    except SQLAlchemyError as exc:
        raise PartialFailureError(f'Duplicating quotation {source.number} failed; nothing was saved') from exc

    logger.info('Quotation %s duplicated as %s by user %s', source.number, duplicate.number, actor.id)
    return duplicate
