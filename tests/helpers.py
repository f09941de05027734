from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import sessionmaker

from app.auth import Principal, Role
from app.db import build_engine
from app.models import Base, QuotationStatus
from app.services.document_service import LineItemData
from app.services.quotation_service import QuotationDraft, create_quotation, transition_quotation_status

TODAY = date(2024, 5, 10)

ADMIN = Principal(id=1, username='admin', role=Role.ADMIN)
MANAGER = Principal(id=2, username='manager', role=Role.SALES_MANAGER)
EXECUTIVE = Principal(id=3, username='executive', role=Role.SALES_EXECUTIVE)


def line(quantity: int, unit_price: str, tax_rate: str = '0', description: str | None = None) -> LineItemData:
    return LineItemData(
        quantity=quantity,
        unit_price=Decimal(unit_price),
        tax_rate=Decimal(tax_rate),
        product_id=1,
        description=description,
    )


class DatabaseTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine('sqlite://')
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self.db = self.session_factory()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def make_quotation(self, *items: LineItemData, discount: str = '0', actor: Principal = ADMIN, **kwargs):
        draft = QuotationDraft(
            company_id=kwargs.pop('company_id', 7),
            contact_id=kwargs.pop('contact_id', 11),
            discount=Decimal(discount),
            items=list(items),
            **kwargs,
        )
        return create_quotation(self.db, actor=actor, draft=draft, today=TODAY)

    def make_accepted_quotation(self, *items: LineItemData, **kwargs):
        quotation = self.make_quotation(*items, **kwargs)
        transition_quotation_status(
            self.db, actor=ADMIN, quotation_id=quotation.id, status=QuotationStatus.SENT, today=TODAY
        )
        transition_quotation_status(
            self.db, actor=ADMIN, quotation_id=quotation.id, status=QuotationStatus.ACCEPTED, today=TODAY
        )
        return quotation
