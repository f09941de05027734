from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth import Principal
from app.errors import ConflictError, NotFoundError, PartialFailureError, ValidationError
from app.models import (
    AuditLogEntry,
    Company,
    Contact,
    Invoice,
    InvoiceStatus,
    Lead,
    Opportunity,
    Product,
    Quotation,
    QuotationItem,
    SalesOrder,
    SalesOrderItem,
)
from app.policy import Operation, enforce
from app.services.document_lifecycle import ensure_order_editable, ensure_quotation_editable
from app.services.document_service import (
    get_quotation,
    get_sales_order,
    list_order_items,
    list_quotation_items,
    recalculate_order_totals,
    recalculate_quotation_totals,
)

logger = logging.getLogger(__name__)

AUDITED_MODELS = {
    model.__tablename__: model
    for model in (
        Company,
        Contact,
        Lead,
        Opportunity,
        Product,
        Quotation,
        QuotationItem,
        SalesOrder,
        SalesOrderItem,
        Invoice,
    )
}


def _json_value(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def snapshot_record(record) -> dict:
    mapper = inspect(record).mapper
    return {attr.key: _json_value(getattr(record, attr.key)) for attr in mapper.column_attrs}


def record_deletion(
    db: Session,
    *,
    table_name: str,
    record_id: int,
    record_data: dict,
    deleted_by: int,
    reason: str | None = None,
) -> AuditLogEntry:
    entry = AuditLogEntry(
        table_name=table_name,
        record_id=record_id,
        record_data=record_data,
        deleted_by=deleted_by,
        reason=(reason or '').strip() or None,
    )
    db.add(entry)
    # The entry must reach the database before the DELETE it accompanies.
    db.flush()
    return entry


def _load_record(db: Session, table_name: str, record_id: int):
    model = AUDITED_MODELS.get(table_name)
    if model is None:
        raise ValidationError(f'Deletion is not supported for table {table_name}', field='table_name')
    record = db.execute(select(model).where(model.id == record_id)).scalar_one_or_none()
    if record is None:
        raise NotFoundError(f'Record {record_id} not found in {table_name}')
    return record


def _invoice_for_order(db: Session, order_id: int) -> Invoice | None:
    return db.execute(select(Invoice).where(Invoice.sales_order_id == order_id)).scalar_one_or_none()


def _policy_resource(db: Session, record):
    if isinstance(record, QuotationItem):
        return get_quotation(db, quotation_id=record.quotation_id)
    if isinstance(record, SalesOrderItem):
        return get_sales_order(db, order_id=record.sales_order_id)
    return record


def _dependents(db: Session, record) -> list:
    """Rows that go with ``record``, deleted (and audited) before it."""
    if isinstance(record, Quotation):
        return list_quotation_items(db, quotation_id=record.id)
    if isinstance(record, QuotationItem):
        ensure_quotation_editable(get_quotation(db, quotation_id=record.quotation_id).status)
        return []
    if isinstance(record, SalesOrder):
        invoice = _invoice_for_order(db, record.id)
        if invoice is not None and invoice.status == InvoiceStatus.PAID:
            raise ConflictError('Sales order has a paid invoice and cannot be deleted')
        dependents = list(list_order_items(db, order_id=record.id))
        if invoice is not None:
            dependents.append(invoice)
        return dependents
    if isinstance(record, SalesOrderItem):
        ensure_order_editable(get_sales_order(db, order_id=record.sales_order_id).status)
        return []
    if isinstance(record, Invoice) and record.status == InvoiceStatus.PAID:
        raise ConflictError('Paid invoices cannot be deleted')
    return []


def _refresh_parent_totals(db: Session, record) -> None:
    if isinstance(record, QuotationItem):
        recalculate_quotation_totals(db, get_quotation(db, quotation_id=record.quotation_id))
    elif isinstance(record, SalesOrderItem):
        recalculate_order_totals(db, get_sales_order(db, order_id=record.sales_order_id))


def _delete_with_audit(db: Session, *, actor: Principal, record, reason: str | None) -> None:
    table_name = record.__tablename__
    record_id = record.id
    dependents = _dependents(db, record)

    try:
        with db.begin_nested():
            for row in dependents:
                record_deletion(
                    db,
                    table_name=row.__tablename__,
                    record_id=row.id,
                    record_data=snapshot_record(row),
                    deleted_by=actor.id,
                    reason=reason,
                )
            record_deletion(
                db,
                table_name=table_name,
                record_id=record_id,
                record_data=snapshot_record(record),
                deleted_by=actor.id,
                reason=reason,
            )
            for row in dependents:
                db.delete(row)
            db.flush()
            db.delete(record)
            db.flush()
            _refresh_parent_totals(db, record)
    except SQLAlchemyError as exc:
        raise PartialFailureError(f'Deleting {table_name} {record_id} failed; nothing was removed') from exc

    logger.info(
        'Deleted %s %s (%s dependent rows) by user %s',
        table_name,
        record_id,
        len(dependents),
        actor.id,
    )


def delete_record(
    db: Session,
    *,
    actor: Principal,
    table_name: str,
    record_id: int,
    reason: str | None = None,
) -> None:
    record = _load_record(db, table_name, record_id)
    enforce(actor, Operation.RECORD_DELETE, _policy_resource(db, record))
    _delete_with_audit(db, actor=actor, record=record, reason=reason)


def delete_owned_item(
    db: Session,
    *,
    actor: Principal,
    table_name: str,
    record_id: int,
    reason: str | None = None,
) -> None:
    """Remove a line item as part of editing its document, still leaving an audit entry."""
    if table_name not in {QuotationItem.__tablename__, SalesOrderItem.__tablename__}:
        raise ValidationError(f'{table_name} rows are not document line items', field='table_name')
    record = _load_record(db, table_name, record_id)
    operation = Operation.QUOTATION_EDIT if isinstance(record, QuotationItem) else Operation.ORDER_EDIT
    enforce(actor, operation, _policy_resource(db, record))
    _delete_with_audit(db, actor=actor, record=record, reason=reason)


def list_audit_log(
    db: Session,
    *,
    actor: Principal,
    table_name: str | None = None,
    limit: int = 500,
) -> list[AuditLogEntry]:
    enforce(actor, Operation.AUDIT_LOG_READ)
    query = select(AuditLogEntry).order_by(AuditLogEntry.deleted_at.desc(), AuditLogEntry.id.desc()).limit(limit)
    if table_name:
        query = query.where(AuditLogEntry.table_name == table_name)
    return db.execute(query).scalars().all()
