from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.models import DocumentSequence, DocumentType

logger = logging.getLogger(__name__)

DOCUMENT_PREFIXES = {
    DocumentType.QUOTATION: 'QT',
    DocumentType.SALES_ORDER: 'SO',
    DocumentType.INVOICE: 'INV',
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def format_document_number(document_type: DocumentType, *, year: int, month: int, sequence: int) -> str:
    return f'{DOCUMENT_PREFIXES[document_type]}-{year}-{month:02d}{sequence:03d}'


def _insert_for_dialect(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == 'postgresql':
        return postgresql.insert
    if dialect == 'sqlite':
        return sqlite.insert
    raise RuntimeError(f'Unsupported database dialect for document sequences: {dialect}')


def next_sequence_value(db: Session, *, document_type: DocumentType, year: int, month: int) -> int:
    insert = _insert_for_dialect(db)
    table = DocumentSequence.__table__
    stmt = insert(table).values(
        document_type=document_type.value,
        year=year,
        month=month,
        last_value=1,
    )
    # One statement: concurrent allocations serialize on the row lock.
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.document_type, table.c.year, table.c.month],
        set_={'last_value': table.c.last_value + 1},
    ).returning(table.c.last_value)
    return int(db.execute(stmt).scalar_one())


def allocate_document_number(db: Session, *, document_type: DocumentType, at: datetime | None = None) -> str:
    moment = at or _now()
    sequence = next_sequence_value(db, document_type=document_type, year=moment.year, month=moment.month)
    number = format_document_number(document_type, year=moment.year, month=moment.month, sequence=sequence)
    logger.info('Allocated %s number %s', document_type.value, number)
    return number
