from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth import Principal
from app.config import settings
from app.errors import PartialFailureError, ValidationError
from app.models import DocumentType, Quotation, QuotationItem, QuotationStatus
from app.policy import Operation, enforce
from app.services import audit_service
from app.services.document_lifecycle import check_quotation_transition, ensure_quotation_editable
from app.services.document_number_service import allocate_document_number
from app.services.document_service import (
    LineItemData,
    apply_lazy_expiry,
    get_quotation,
    get_quotation_item,
    item_values,
    list_quotation_items,
    next_position,
    recalculate_quotation_totals,
)
from app.services.line_item_calculator import ZERO, to_money, validate_discount

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {'company_id', 'contact_id', 'opportunity_id', 'discount', 'valid_until', 'notes'}


@dataclass(frozen=True)
class QuotationDraft:
    company_id: int | None
    contact_id: int | None = None
    opportunity_id: int | None = None
    discount: Decimal = ZERO
    valid_until: date | None = None
    notes: str | None = None
    items: list[LineItemData] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def default_valid_until(today: date) -> date:
    return today + timedelta(days=settings.quotation_validity_days)


def _validate_valid_until(valid_until: date | None, today: date) -> None:
    if valid_until is not None and valid_until < today:
        raise ValidationError('Valid-until date cannot be in the past', field='valid_until')


def create_quotation(
    db: Session,
    *,
    actor: Principal,
    draft: QuotationDraft,
    today: date | None = None,
) -> Quotation:
    enforce(actor, Operation.QUOTATION_CREATE)
    today = today or _now().date()
    if draft.company_id is None:
        raise ValidationError('Company is required', field='company_id')
    validate_discount(draft.discount)
    _validate_valid_until(draft.valid_until, today)
    # Validate every line before writing anything.
    rows = [item_values(item) for item in draft.items]

    try:
        with db.begin_nested():
            quotation = Quotation(
                number=allocate_document_number(db, document_type=DocumentType.QUOTATION),
                company_id=draft.company_id,
                contact_id=draft.contact_id,
                opportunity_id=draft.opportunity_id,
                discount=to_money(draft.discount),
                status=QuotationStatus.DRAFT,
                valid_until=draft.valid_until or default_valid_until(today),
                notes=(draft.notes or '').strip() or None,
                created_by=actor.id,
            )
            db.add(quotation)
            db.flush()
            db.add_all(
                QuotationItem(quotation_id=quotation.id, position=position, **values)
                for position, values in enumerate(rows)
            )
            recalculate_quotation_totals(db, quotation)
    except SQLAlchemyError as exc:
        raise PartialFailureError('Quotation could not be created; nothing was saved') from exc

    logger.info('Quotation %s created by user %s with %s items', quotation.number, actor.id, len(rows))
    return quotation


def list_quotations(
    db: Session,
    *,
    actor: Principal,
    status: QuotationStatus | None = None,
    opportunity_id: int | None = None,
    limit: int = 100,
    today: date | None = None,
) -> list[Quotation]:
    enforce(actor, Operation.DOCUMENT_READ)
    today = today or _now().date()
    query = select(Quotation).order_by(Quotation.created_at.desc(), Quotation.id.desc()).limit(limit)
    if status is not None:
        query = query.where(_effective_status_is(status, today))
    if opportunity_id is not None:
        query = query.where(Quotation.opportunity_id == opportunity_id)
    quotations = db.execute(query).scalars().all()
    apply_lazy_expiry(db, quotations, today=today)
    return quotations


def _effective_status_is(status: QuotationStatus, today: date):
    # Stored status may lag behind validity; filter on what a read would report.
    lapsed = and_(Quotation.status == QuotationStatus.SENT, Quotation.valid_until < today)
    if status == QuotationStatus.SENT:
        still_valid = or_(Quotation.valid_until.is_(None), Quotation.valid_until >= today)
        return and_(Quotation.status == QuotationStatus.SENT, still_valid)
    if status == QuotationStatus.EXPIRED:
        return or_(Quotation.status == QuotationStatus.EXPIRED, lapsed)
    return Quotation.status == status


def read_quotation(db: Session, *, actor: Principal, quotation_id: int, today: date | None = None) -> Quotation:
    enforce(actor, Operation.DOCUMENT_READ)
    return get_quotation(db, quotation_id=quotation_id, today=today)


def quotation_detail(db: Session, quotation: Quotation) -> dict:
    items = list_quotation_items(db, quotation_id=quotation.id)
    return {
        'id': quotation.id,
        'number': quotation.number,
        'company_id': quotation.company_id,
        'contact_id': quotation.contact_id,
        'opportunity_id': quotation.opportunity_id,
        'subtotal': quotation.subtotal,
        'tax': quotation.tax,
        'discount': quotation.discount,
        'total': quotation.total,
        'status': quotation.status.value,
        'valid_until': quotation.valid_until,
        'notes': quotation.notes,
        'converted_at': quotation.converted_at,
        'created_by': quotation.created_by,
        'created_at': quotation.created_at,
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


def update_quotation(
    db: Session,
    *,
    actor: Principal,
    quotation_id: int,
    changes: dict,
    today: date | None = None,
) -> Quotation:
    today = today or _now().date()
    quotation = get_quotation(db, quotation_id=quotation_id, today=today)
    enforce(actor, Operation.QUOTATION_EDIT, quotation)
    ensure_quotation_editable(quotation.status)

    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f'Field cannot be edited: {sorted(unknown)[0]}', field=sorted(unknown)[0])
    if 'company_id' in changes and changes['company_id'] is None:
        raise ValidationError('Company is required', field='company_id')
    if 'discount' in changes:
        validate_discount(changes['discount'])
        changes = {**changes, 'discount': to_money(changes['discount'])}
    if 'valid_until' in changes:
        _validate_valid_until(changes['valid_until'], today)
    if 'notes' in changes:
        changes = {**changes, 'notes': (changes['notes'] or '').strip() or None}

    for key, value in changes.items():
        setattr(quotation, key, value)
    recalculate_quotation_totals(db, quotation)
    return quotation


def add_quotation_item(db: Session, *, actor: Principal, quotation_id: int, item: LineItemData) -> Quotation:
    quotation = get_quotation(db, quotation_id=quotation_id)
    enforce(actor, Operation.QUOTATION_EDIT, quotation)
    ensure_quotation_editable(quotation.status)

    values = item_values(item)
    existing = list_quotation_items(db, quotation_id=quotation.id)
    db.add(QuotationItem(quotation_id=quotation.id, position=next_position(existing), **values))
    recalculate_quotation_totals(db, quotation)
    return quotation


def update_quotation_item(
    db: Session,
    *,
    actor: Principal,
    quotation_id: int,
    item_id: int,
    item: LineItemData,
) -> Quotation:
    quotation = get_quotation(db, quotation_id=quotation_id)
    enforce(actor, Operation.QUOTATION_EDIT, quotation)
    ensure_quotation_editable(quotation.status)

    row = get_quotation_item(db, quotation_id=quotation.id, item_id=item_id)
    for key, value in item_values(item).items():
        setattr(row, key, value)
    recalculate_quotation_totals(db, quotation)
    return quotation


def remove_quotation_item(
    db: Session,
    *,
    actor: Principal,
    quotation_id: int,
    item_id: int,
    reason: str | None = None,
) -> Quotation:
    quotation = get_quotation(db, quotation_id=quotation_id)
    enforce(actor, Operation.QUOTATION_EDIT, quotation)
    get_quotation_item(db, quotation_id=quotation.id, item_id=item_id)
    # Item rows are audited like any other deletion; totals are recomputed there.
    audit_service.delete_owned_item(
        db,
        actor=actor,
        table_name=QuotationItem.__tablename__,
        record_id=item_id,
        reason=reason,
    )
    return quotation


def transition_quotation_status(
    db: Session,
    *,
    actor: Principal,
    quotation_id: int,
    status: QuotationStatus,
    today: date | None = None,
) -> Quotation:
    quotation = get_quotation(db, quotation_id=quotation_id, today=today)
    enforce(actor, Operation.QUOTATION_TRANSITION, quotation)

    item_count = len(list_quotation_items(db, quotation_id=quotation.id))
    previous = quotation.status
    quotation.status = check_quotation_transition(previous, status, item_count=item_count)
    quotation.updated_at = _now()
    db.flush()
    logger.info('Quotation %s moved from %s to %s by user %s', quotation.number, previous.value, status.value, actor.id)
    return quotation
