from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.models import DocumentType, SalesOrderStatus
from app.schemas import (
    EmailIn,
    EmailOut,
    InvoiceOut,
    LineItemIn,
    SalesOrderCreateIn,
    SalesOrderOut,
    SalesOrderStatusIn,
    SalesOrderUpdateIn,
)
from app.services.document_delivery import EmailDispatcher, PdfRenderer
from app.services.invoice_service import ensure_invoice, invoice_detail
from app.services.notification_service import email_document, render_document
from app.services.order_service import (
    SalesOrderDraft,
    add_order_item,
    create_sales_order,
    list_sales_orders,
    order_detail,
    read_sales_order,
    remove_order_item,
    transition_order_status,
    update_order_item,
    update_sales_order,
)
from app.services.provider_factory import get_email_dispatcher, get_pdf_renderer

router = APIRouter(prefix='/orders', tags=['orders'])


@router.get('', response_model=list[SalesOrderOut])
def list_orders_route(
    status: SalesOrderStatus | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = list_sales_orders(db, actor=principal, status=status, limit=limit)
    return [order_detail(db, order) for order in rows]


@router.post('', response_model=SalesOrderOut, status_code=201)
def create_order_route(
    payload: SalesOrderCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    draft = SalesOrderDraft(
        company_id=payload.company_id,
        contact_id=payload.contact_id,
        opportunity_id=payload.opportunity_id,
        discount=payload.discount,
        order_date=payload.order_date,
        notes=payload.notes,
        items=[item.to_data() for item in payload.items],
    )
    order = create_sales_order(db, actor=principal, draft=draft)
    db.commit()
    return order_detail(db, order)


@router.get('/{order_id}', response_model=SalesOrderOut)
def get_order_route(
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return order_detail(db, read_sales_order(db, actor=principal, order_id=order_id))


@router.patch('/{order_id}', response_model=SalesOrderOut)
def update_order_route(
    order_id: int,
    payload: SalesOrderUpdateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = update_sales_order(db, actor=principal, order_id=order_id, changes=payload.model_dump(exclude_unset=True))
    db.commit()
    return order_detail(db, order)


@router.post('/{order_id}/items', response_model=SalesOrderOut, status_code=201)
def add_item_route(
    order_id: int,
    payload: LineItemIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = add_order_item(db, actor=principal, order_id=order_id, item=payload.to_data())
    db.commit()
    return order_detail(db, order)


@router.patch('/{order_id}/items/{item_id}', response_model=SalesOrderOut)
def update_item_route(
    order_id: int,
    item_id: int,
    payload: LineItemIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = update_order_item(db, actor=principal, order_id=order_id, item_id=item_id, item=payload.to_data())
    db.commit()
    return order_detail(db, order)


@router.delete('/{order_id}/items/{item_id}', response_model=SalesOrderOut)
def remove_item_route(
    order_id: int,
    item_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = remove_order_item(db, actor=principal, order_id=order_id, item_id=item_id)
    db.commit()
    return order_detail(db, order)


@router.post('/{order_id}/status', response_model=SalesOrderOut)
def transition_status_route(
    order_id: int,
    payload: SalesOrderStatusIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = transition_order_status(db, actor=principal, order_id=order_id, status=payload.status)
    db.commit()
    return order_detail(db, order)


@router.post('/{order_id}/invoice', response_model=InvoiceOut)
def ensure_invoice_route(
    order_id: int,
    response: Response,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    invoice, created = ensure_invoice(db, actor=principal, order_id=order_id)
    db.commit()
    response.status_code = 201 if created else 200
    order = read_sales_order(db, actor=principal, order_id=order_id)
    return invoice_detail(invoice, order_number=order.order_number)


@router.post('/{order_id}/email', response_model=EmailOut)
def email_route(
    order_id: int,
    payload: EmailIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    renderer: PdfRenderer = Depends(get_pdf_renderer),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    return email_document(
        db,
        actor=principal,
        document_type=DocumentType.SALES_ORDER,
        document_id=order_id,
        recipient=payload.recipient,
        message=payload.message,
        renderer=renderer,
        dispatcher=dispatcher,
    )


@router.get('/{order_id}/pdf')
def pdf_route(
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    renderer: PdfRenderer = Depends(get_pdf_renderer),
):
    document = render_document(
        db,
        actor=principal,
        document_type=DocumentType.SALES_ORDER,
        document_id=order_id,
        renderer=renderer,
    )
    return Response(
        content=document.content,
        media_type=document.content_type,
        headers={'Content-Disposition': f'inline; filename="{document.filename}"'},
    )
