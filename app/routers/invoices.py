from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.models import DocumentType, InvoiceStatus
from app.schemas import EmailIn, EmailOut, InvoiceOut
from app.services.document_delivery import EmailDispatcher, PdfRenderer
from app.services.document_service import get_sales_order
from app.services.invoice_service import invoice_detail, list_invoices, mark_invoice_paid, read_invoice
from app.services.notification_service import email_document, render_document
from app.services.provider_factory import get_email_dispatcher, get_pdf_renderer

router = APIRouter(prefix='/invoices', tags=['invoices'])


@router.get('', response_model=list[InvoiceOut])
def list_invoices_route(
    status: InvoiceStatus | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return list_invoices(db, actor=principal, status=status, limit=limit)


@router.get('/{invoice_id}', response_model=InvoiceOut)
def get_invoice_route(
    invoice_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    invoice = read_invoice(db, actor=principal, invoice_id=invoice_id)
    order = get_sales_order(db, order_id=invoice.sales_order_id)
    return invoice_detail(invoice, order_number=order.order_number)


@router.post('/{invoice_id}/mark-paid', response_model=InvoiceOut)
def mark_paid_route(
    invoice_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    invoice = mark_invoice_paid(db, actor=principal, invoice_id=invoice_id)
    db.commit()
    order = get_sales_order(db, order_id=invoice.sales_order_id)
    return invoice_detail(invoice, order_number=order.order_number)


@router.post('/{invoice_id}/email', response_model=EmailOut)
def email_route(
    invoice_id: int,
    payload: EmailIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    renderer: PdfRenderer = Depends(get_pdf_renderer),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    return email_document(
        db,
        actor=principal,
        document_type=DocumentType.INVOICE,
        document_id=invoice_id,
        recipient=payload.recipient,
        message=payload.message,
        renderer=renderer,
        dispatcher=dispatcher,
    )


@router.get('/{invoice_id}/pdf')
def pdf_route(
    invoice_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    renderer: PdfRenderer = Depends(get_pdf_renderer),
):
    document = render_document(
        db,
        actor=principal,
        document_type=DocumentType.INVOICE,
        document_id=invoice_id,
        renderer=renderer,
    )
    return Response(
        content=document.content,
        media_type=document.content_type,
        headers={'Content-Disposition': f'inline; filename="{document.filename}"'},
    )
