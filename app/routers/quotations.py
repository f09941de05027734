from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.models import DocumentType, QuotationStatus
from app.schemas import (
    EmailIn,
    EmailOut,
    LineItemIn,
    QuotationCreateIn,
    QuotationOut,
    QuotationStatusIn,
    QuotationUpdateIn,
    SalesOrderOut,
)
from app.services.conversion_service import convert_quotation_to_order, duplicate_quotation
from app.services.document_delivery import EmailDispatcher, PdfRenderer
from app.services.notification_service import email_document, render_document
from app.services.order_service import order_detail
from app.services.provider_factory import get_email_dispatcher, get_pdf_renderer
from app.services.quotation_service import (
    QuotationDraft,
    add_quotation_item,
    create_quotation,
    list_quotations,
    quotation_detail,
    read_quotation,
    remove_quotation_item,
    transition_quotation_status,
    update_quotation,
    update_quotation_item,
)

router = APIRouter(prefix='/quotations', tags=['quotations'])


@router.get('', response_model=list[QuotationOut])
def list_quotations_route(
    status: QuotationStatus | None = None,
    opportunity_id: int | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = list_quotations(db, actor=principal, status=status, opportunity_id=opportunity_id, limit=limit)
    # Persist lazy SENT -> EXPIRED flips.
    db.commit()
    return [quotation_detail(db, quotation) for quotation in rows]


@router.post('', response_model=QuotationOut, status_code=201)
def create_quotation_route(
    payload: QuotationCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    draft = QuotationDraft(
        company_id=payload.company_id,
        contact_id=payload.contact_id,
        opportunity_id=payload.opportunity_id,
        discount=payload.discount,
        valid_until=payload.valid_until,
        notes=payload.notes,
        items=[item.to_data() for item in payload.items],
    )
    quotation = create_quotation(db, actor=principal, draft=draft)
    db.commit()
    return quotation_detail(db, quotation)


@router.get('/{quotation_id}', response_model=QuotationOut)
def get_quotation_route(
    quotation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    quotation = read_quotation(db, actor=principal, quotation_id=quotation_id)
    # Persist a lazy SENT -> EXPIRED flip.
    db.commit()
    return quotation_detail(db, quotation)


@router.patch('/{quotation_id}', response_model=QuotationOut)
def update_quotation_route(
    quotation_id: int,
    payload: QuotationUpdateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    quotation = update_quotation(
        db,
        actor=principal,
        quotation_id=quotation_id,
        changes=payload.model_dump(exclude_unset=True),
    )
    db.commit()
    return quotation_detail(db, quotation)


@router.post('/{quotation_id}/items', response_model=QuotationOut, status_code=201)
def add_item_route(
    quotation_id: int,
    payload: LineItemIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    quotation = add_quotation_item(db, actor=principal, quotation_id=quotation_id, item=payload.to_data())
    db.commit()
    return quotation_detail(db, quotation)


@router.patch('/{quotation_id}/items/{item_id}', response_model=QuotationOut)
def update_item_route(
    quotation_id: int,
    item_id: int,
    payload: LineItemIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    quotation = update_quotation_item(
        db,
        actor=principal,
        quotation_id=quotation_id,
        item_id=item_id,
        item=payload.to_data(),
    )
    db.commit()
    return quotation_detail(db, quotation)


@router.delete('/{quotation_id}/items/{item_id}', response_model=QuotationOut)
def remove_item_route(
    quotation_id: int,
    item_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    quotation = remove_quotation_item(db, actor=principal, quotation_id=quotation_id, item_id=item_id)
    db.commit()
    return quotation_detail(db, quotation)


@router.post('/{quotation_id}/status', response_model=QuotationOut)
def transition_status_route(
    quotation_id: int,
    payload: QuotationStatusIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    quotation = transition_quotation_status(db, actor=principal, quotation_id=quotation_id, status=payload.status)
    db.commit()
    return quotation_detail(db, quotation)


@router.post('/{quotation_id}/convert', response_model=SalesOrderOut, status_code=201)
def convert_route(
    quotation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    order = convert_quotation_to_order(db, actor=principal, quotation_id=quotation_id)
    db.commit()
    return order_detail(db, order)


@router.post('/{quotation_id}/duplicate', response_model=QuotationOut, status_code=201)
def duplicate_route(
    quotation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    quotation = duplicate_quotation(db, actor=principal, quotation_id=quotation_id)
    db.commit()
    return quotation_detail(db, quotation)


@router.post('/{quotation_id}/email', response_model=EmailOut)
def email_route(
    quotation_id: int,
    payload: EmailIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    renderer: PdfRenderer = Depends(get_pdf_renderer),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    return email_document(
        db,
        actor=principal,
        document_type=DocumentType.QUOTATION,
        document_id=quotation_id,
        recipient=payload.recipient,
        message=payload.message,
        renderer=renderer,
        dispatcher=dispatcher,
    )


@router.get('/{quotation_id}/pdf')
def pdf_route(
    quotation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    renderer: PdfRenderer = Depends(get_pdf_renderer),
):
    document = render_document(
        db,
        actor=principal,
        document_type=DocumentType.QUOTATION,
        document_id=quotation_id,
        renderer=renderer,
    )
    db.commit()
    return Response(
        content=document.content,
        media_type=document.content_type,
        headers={'Content-Disposition': f'inline; filename="{document.filename}"'},
    )
