from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth import Principal
from app.errors import PartialFailureError, ValidationError
from app.models import DocumentType, SalesOrder, SalesOrderItem, SalesOrderStatus
from app.policy import Operation, enforce
from app.services import audit_service
from app.services.document_lifecycle import check_order_transition, ensure_order_editable
from app.services.document_number_service import allocate_document_number
from app.services.document_service import (
    LineItemData,
    get_order_item,
    get_sales_order,
    item_values,
    list_order_items,
    next_position,
    recalculate_order_totals,
)
from app.services.line_item_calculator import ZERO, to_money, validate_discount

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {'company_id', 'contact_id', 'opportunity_id', 'discount', 'order_date', 'notes'}


@dataclass(frozen=True)
class SalesOrderDraft:
    company_id: int | None
    contact_id: int | None = None
    opportunity_id: int | None = None
    discount: Decimal = ZERO
    order_date: date | None = None
    notes: str | None = None
    items: list[LineItemData] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def create_sales_order(db: Session, *, actor: Principal, draft: SalesOrderDraft) -> SalesOrder:
    enforce(actor, Operation.ORDER_CREATE)
    if draft.company_id is None:
        raise ValidationError('Company is required', field='company_id')
    validate_discount(draft.discount)
    rows = [item_values(item) for item in draft.items]

    try:
        with db.begin_nested():
            order = SalesOrder(
                order_number=allocate_document_number(db, document_type=DocumentType.SALES_ORDER),
                company_id=draft.company_id,
                contact_id=draft.contact_id,
                opportunity_id=draft.opportunity_id,
                discount=to_money(draft.discount),
                status=SalesOrderStatus.NEW,
                order_date=draft.order_date or _now().date(),
                notes=(draft.notes or '').strip() or None,
                created_by=actor.id,
            )
            db.add(order)
            db.flush()
            db.add_all(
                SalesOrderItem(sales_order_id=order.id, position=position, **values)
                for position, values in enumerate(rows)
            )
            recalculate_order_totals(db, order)
    except SQLAlchemyError as exc:
        raise PartialFailureError('Sales order could not be created; nothing was saved') from exc

    logger.info('Sales order %s created directly by user %s', order.order_number, actor.id)
    return order


def list_sales_orders(
    db: Session,
    *,
    actor: Principal,
    status: SalesOrderStatus | None = None,
    limit: int = 100,
) -> list[SalesOrder]:
    enforce(actor, Operation.DOCUMENT_READ)
    query = select(SalesOrder).order_by(SalesOrder.created_at.desc(), SalesOrder.id.desc()).limit(limit)
    if status is not None:
        query = query.where(SalesOrder.status == status)
    return db.execute(query).scalars().all()


def read_sales_order(db: Session, *, actor: Principal, order_id: int) -> SalesOrder:
    enforce(actor, Operation.DOCUMENT_READ)
    return get_sales_order(db, order_id=order_id)


def order_detail(db: Session, order: SalesOrder) -> dict:
    items = list_order_items(db, order_id=order.id)
    return {
        'id': order.id,
        'order_number': order.order_number,
        'source_quotation_id': order.source_quotation_id,
        'company_id': order.company_id,
        'contact_id': order.contact_id,
        'opportunity_id': order.opportunity_id,
        'subtotal': order.subtotal,
        'tax': order.tax,
        'discount': order.discount,
        'total': order.total,
        'status': order.status.value,
        'order_date': order.order_date,
        'notes': order.notes,
        'created_by': order.created_by,
        'created_at': order.created_at,
        'items': [
            {
                'id': item.id,
                'product_id': item.product_id,
                'description': item.description,
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'tax_rate': item.tax_rate,
                'subtotal': item.subtotal,
            }
            for item in items
        ],
    }


def update_sales_order(db: Session, *, actor: Principal, order_id: int, changes: dict) -> SalesOrder:
    order = get_sales_order(db, order_id=order_id)
    enforce(actor, Operation.ORDER_EDIT, order)
    ensure_order_editable(order.status)

    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f'Field cannot be edited: {sorted(unknown)[0]}', field=sorted(unknown)[0])
    if 'company_id' in changes and changes['company_id'] is None:
        raise ValidationError('Company is required', field='company_id')
    if 'discount' in changes:
        validate_discount(changes['discount'])
        changes = {**changes, 'discount': to_money(changes['discount'])}

    for key, value in changes.items():
        setattr(order, key, value)
    recalculate_order_totals(db, order)
    return order


def add_order_item(db: Session, *, actor: Principal, order_id: int, item: LineItemData) -> SalesOrder:
    order = get_sales_order(db, order_id=order_id)
    enforce(actor, Operation.ORDER_EDIT, order)
    ensure_order_editable(order.status)

    values = item_values(item)
    existing = list_order_items(db, order_id=order.id)
    db.add(SalesOrderItem(sales_order_id=order.id, position=next_position(existing), **values))
    recalculate_order_totals(db, order)
    return order


def update_order_item(
    db: Session,
    *,
    actor: Principal,
    order_id: int,
    item_id: int,
    item: LineItemData,
) -> SalesOrder:
    order = get_sales_order(db, order_id=order_id)
    enforce(actor, Operation.ORDER_EDIT, order)
    ensure_order_editable(order.status)

    row = get_order_item(db, order_id=order.id, item_id=item_id)
    for key, value in item_values(item).items():
        setattr(row, key, value)
    recalculate_order_totals(db, order)
    return order


def remove_order_item(
    db: Session,
    *,
    actor: Principal,
    order_id: int,
    item_id: int,
    reason: str | None = None,
) -> SalesOrder:
    order = get_sales_order(db, order_id=order_id)
    get_order_item(db, order_id=order.id, item_id=item_id)
    audit_service.delete_owned_item(
        db,
        actor=actor,
        table_name=SalesOrderItem.__tablename__,
        record_id=item_id,
        reason=reason,
    )
    return order


def transition_order_status(
    db: Session,
    *,
    actor: Principal,
    order_id: int,
    status: SalesOrderStatus,
) -> SalesOrder:
    order = get_sales_order(db, order_id=order_id)
    enforce(actor, Operation.ORDER_TRANSITION, order)

    previous = order.status
    order.status = check_order_transition(previous, status)
    order.updated_at = _now()
    db.flush()
    logger.info('Sales order %s moved from %s to %s by user %s', order.order_number, previous.value, status.value, actor.id)
    return order
