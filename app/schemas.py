from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models import InvoiceStatus, QuotationStatus, SalesOrderStatus
from app.services.document_service import LineItemData


class LineItemIn(BaseModel):
    product_id: int | None = None
    description: str | None = None
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal = Decimal('0')

    def to_data(self) -> LineItemData:
        return LineItemData(
            quantity=self.quantity,
            unit_price=self.unit_price,
            tax_rate=self.tax_rate,
            product_id=self.product_id,
            description=self.description,
        )


class LineItemOut(BaseModel):
    id: int
    product_id: int | None
    description: str | None
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    subtotal: Decimal


class QuotationCreateIn(BaseModel):
    company_id: int | None = None
    contact_id: int | None = None
    opportunity_id: int | None = None
    discount: Decimal = Decimal('0')
    valid_until: date | None = None
    notes: str | None = None
    items: list[LineItemIn] = Field(default_factory=list)


class QuotationUpdateIn(BaseModel):
    model_config = ConfigDict(extra='forbid')

    company_id: int | None = None
    contact_id: int | None = None
    opportunity_id: int | None = None
    discount: Decimal | None = None
    valid_until: date | None = None
    notes: str | None = None


class QuotationStatusIn(BaseModel):
    status: QuotationStatus


class QuotationOut(BaseModel):
    id: int
    number: str
    company_id: int | None
    contact_id: int | None
    opportunity_id: int | None
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    status: QuotationStatus
    valid_until: date | None
    notes: str | None
    converted_at: datetime | None
    created_by: int
    created_at: datetime | None
    items: list[LineItemOut]


class SalesOrderCreateIn(BaseModel):
    company_id: int | None = None
    contact_id: int | None = None
    opportunity_id: int | None = None
    discount: Decimal = Decimal('0')
    order_date: date | None = None
    notes: str | None = None
    items: list[LineItemIn] = Field(default_factory=list)


class SalesOrderUpdateIn(BaseModel):
    model_config = ConfigDict(extra='forbid')

    company_id: int | None = None
    contact_id: int | None = None
    opportunity_id: int | None = None
    discount: Decimal | None = None
    order_date: date | None = None
    notes: str | None = None


class SalesOrderStatusIn(BaseModel):
    status: SalesOrderStatus


class SalesOrderOut(BaseModel):
    id: int
    order_number: str
    source_quotation_id: int | None
    company_id: int | None
    contact_id: int | None
    opportunity_id: int | None
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    status: SalesOrderStatus
    order_date: date | None
    notes: str | None
    created_by: int
    created_at: datetime | None
    items: list[LineItemOut]


class InvoiceOut(BaseModel):
    id: int
    invoice_number: str
    sales_order_id: int
    order_number: str | None = None
    status: InvoiceStatus
    total: Decimal
    issued_at: datetime | None
    paid_at: datetime | None


class EmailIn(BaseModel):
    recipient: str
    message: str | None = None


class EmailOut(BaseModel):
    document_type: str
    document_id: int
    document_number: str
    recipient: str
    attachment: str


class DeleteRecordIn(BaseModel):
    reason: str | None = None


class AuditLogEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    table_name: str
    record_id: int
    record_data: dict
    deleted_at: datetime | None
    deleted_by: int
    reason: str | None
