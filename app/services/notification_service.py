from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.auth import Principal
from app.errors import ValidationError
from app.models import DocumentType
from app.policy import Operation, enforce
from app.services.document_delivery import EmailDispatcher, PdfRenderer, RenderedDocument
from app.services.document_service import get_quotation, get_sales_order
from app.services.invoice_service import get_invoice

logger = logging.getLogger(__name__)

SUBJECTS = {
    DocumentType.QUOTATION: 'Quotation {number}',
    DocumentType.SALES_ORDER: 'Sales order {number}',
    DocumentType.INVOICE: 'Invoice {number}',
}


def _document_number(db: Session, document_type: DocumentType, document_id: int) -> str:
    if document_type == DocumentType.QUOTATION:
        return get_quotation(db, quotation_id=document_id).number
    if document_type == DocumentType.SALES_ORDER:
        return get_sales_order(db, order_id=document_id).order_number
    return get_invoice(db, invoice_id=document_id).invoice_number


def render_document(
    db: Session,
    *,
    actor: Principal,
    document_type: DocumentType,
    document_id: int,
    renderer: PdfRenderer,
) -> RenderedDocument:
    enforce(actor, Operation.DOCUMENT_READ)
    number = _document_number(db, document_type, document_id)
    logger.info('Rendering %s %s for user %s', document_type.value, number, actor.id)
    return renderer.render(document_type=document_type, document_id=document_id, document_number=number)


def email_document(
    db: Session,
    *,
    actor: Principal,
    document_type: DocumentType,
    document_id: int,
    recipient: str,
    message: str | None,
    renderer: PdfRenderer,
    dispatcher: EmailDispatcher,
) -> dict:
    enforce(actor, Operation.DOCUMENT_EMAIL)
    clean_recipient = (recipient or '').strip()
    if '@' not in clean_recipient:
        raise ValidationError('A valid recipient email is required', field='recipient')

    number = _document_number(db, document_type, document_id)
    attachment = renderer.render(document_type=document_type, document_id=document_id, document_number=number)
    subject = SUBJECTS[document_type].format(number=number)
    dispatcher.send(
        recipient=clean_recipient,
        subject=subject,
        body=(message or '').strip() or f'Please find {subject} attached.',
        attachment=attachment,
    )
    logger.info('Emailed %s to %s for user %s', subject, clean_recipient, actor.id)
    return {
        'document_type': document_type.value,
        'document_id': document_id,
        'document_number': number,
        'recipient': clean_recipient,
        'attachment': attachment.filename,
    }
