from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select

from app.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models import AuditLogEntry, Quotation, QuotationItem, QuotationStatus
from app.services.document_service import get_quotation, list_quotation_items
from app.services.quotation_service import (
    QuotationDraft,
    add_quotation_item,
    create_quotation,
    list_quotations,
    quotation_detail,
    remove_quotation_item,
    transition_quotation_status,
    update_quotation,
    update_quotation_item,
)
from tests.helpers import ADMIN, EXECUTIVE, TODAY, DatabaseTestCase, line


class QuotationServiceTests(DatabaseTestCase):
    def assert_totals_consistent(self, quotation: Quotation) -> None:
        items = list_quotation_items(self.db, quotation_id=quotation.id)
        self.assertEqual(quotation.subtotal, sum((item.subtotal for item in items), Decimal('0.00')))
        self.assertLessEqual(
            abs(quotation.total - (quotation.subtotal - quotation.discount + quotation.tax)),
            Decimal('0.01'),
        )

    def test_create_computes_totals(self) -> None:
        quotation = self.make_quotation(line(2, '100', '10'), line(1, '50', '10'))
        self.assertEqual(quotation.status, QuotationStatus.DRAFT)
        self.assertEqual(quotation.subtotal, Decimal('250.00'))
        self.assertEqual(quotation.tax, Decimal('25.00'))
        self.assertEqual(quotation.total, Decimal('275.00'))
        self.assertRegex(quotation.number, r'^QT-\d{4}-\d{5,}$')
        self.assertEqual(quotation.valid_until, date(2024, 6, 9))
        self.assertEqual(quotation.created_by, ADMIN.id)

    def test_create_requires_company(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            create_quotation(self.db, actor=ADMIN, draft=QuotationDraft(company_id=None), today=TODAY)
        self.assertEqual(ctx.exception.field, 'company_id')

    def test_invalid_line_writes_nothing(self) -> None:
        with self.assertRaises(ValidationError):
            self.make_quotation(line(1, '10'), line(-2, '10'))
        self.assertEqual(self.db.execute(select(func.count(Quotation.id))).scalar_one(), 0)
        self.assertEqual(self.db.execute(select(func.count(QuotationItem.id))).scalar_one(), 0)

    def test_past_valid_until_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.make_quotation(line(1, '10'), valid_until=date(2024, 5, 1))
        self.assertEqual(ctx.exception.field, 'valid_until')

    def test_item_changes_recompute_totals(self) -> None:
        quotation = self.make_quotation(line(2, '100', '10'), discount='20')
        add_quotation_item(self.db, actor=ADMIN, quotation_id=quotation.id, item=line(3, '9.99', '5'))
        self.assert_totals_consistent(quotation)
        self.assertEqual(quotation.subtotal, Decimal('229.97'))

        first = list_quotation_items(self.db, quotation_id=quotation.id)[0]
        update_quotation_item(self.db, actor=ADMIN, quotation_id=quotation.id, item_id=first.id, item=line(1, '100', '10'))
        self.assert_totals_consistent(quotation)
        self.assertEqual(quotation.subtotal, Decimal('129.97'))

        remove_quotation_item(self.db, actor=ADMIN, quotation_id=quotation.id, item_id=first.id, reason='not needed')
        self.assert_totals_consistent(quotation)
        self.assertEqual(quotation.subtotal, Decimal('29.97'))
        self.assertEqual(quotation.discount, Decimal('20.00'))

    def test_removed_item_is_audited(self) -> None:
        quotation = self.make_quotation(line(2, '100'), line(1, '5'))
        item = list_quotation_items(self.db, quotation_id=quotation.id)[1]
        remove_quotation_item(self.db, actor=ADMIN, quotation_id=quotation.id, item_id=item.id)
        entry = self.db.execute(select(AuditLogEntry)).scalar_one()
        self.assertEqual(entry.table_name, 'quotation_items')
        self.assertEqual(entry.record_id, item.id)
        self.assertEqual(entry.record_data['unit_price'], '5.00')

    def test_update_header_fields(self) -> None:
        quotation = self.make_quotation(line(1, '100'))
        update_quotation(
            self.db,
            actor=ADMIN,
            quotation_id=quotation.id,
            changes={'discount': Decimal('10'), 'notes': '  net 30  '},
            today=TODAY,
        )
        self.assertEqual(quotation.total, Decimal('90.00'))
        self.assertEqual(quotation.notes, 'net 30')

    def test_unknown_field_is_rejected(self) -> None:
        quotation = self.make_quotation(line(1, '100'))
        with self.assertRaises(ValidationError) as ctx:
            update_quotation(self.db, actor=ADMIN, quotation_id=quotation.id, changes={'total': 1}, today=TODAY)
        self.assertEqual(ctx.exception.field, 'total')

    def test_null_discount_is_rejected(self) -> None:
        quotation = self.make_quotation(line(1, '100'), discount='5')
        with self.assertRaises(ValidationError) as ctx:
            update_quotation(self.db, actor=ADMIN, quotation_id=quotation.id, changes={'discount': None}, today=TODAY)
        self.assertEqual(ctx.exception.field, 'discount')
        self.assertEqual(quotation.discount, Decimal('5.00'))

    def test_sent_quotation_is_read_only(self) -> None:
        quotation = self.make_quotation(line(1, '100'))
        transition_quotation_status(self.db, actor=ADMIN, quotation_id=quotation.id, status=QuotationStatus.SENT, today=TODAY)
        with self.assertRaises(ConflictError):
            add_quotation_item(self.db, actor=ADMIN, quotation_id=quotation.id, item=line(1, '1'))
        with self.assertRaises(ConflictError):
            update_quotation(self.db, actor=ADMIN, quotation_id=quotation.id, changes={'notes': 'x'}, today=TODAY)
        item = list_quotation_items(self.db, quotation_id=quotation.id)[0]
        with self.assertRaises(ConflictError):
            remove_quotation_item(self.db, actor=ADMIN, quotation_id=quotation.id, item_id=item.id)

    def test_empty_quotation_cannot_be_sent(self) -> None:
        quotation = self.make_quotation()
        with self.assertRaises(ConflictError):
            transition_quotation_status(
                self.db, actor=ADMIN, quotation_id=quotation.id, status=QuotationStatus.SENT, today=TODAY
            )

    def test_draft_to_accepted_is_rejected(self) -> None:
        quotation = self.make_quotation(line(1, '100'))
        with self.assertRaises(ConflictError):
            transition_quotation_status(
                self.db, actor=ADMIN, quotation_id=quotation.id, status=QuotationStatus.ACCEPTED, today=TODAY
            )
        self.assertEqual(quotation.status, QuotationStatus.DRAFT)

    def test_sent_quotation_expires_when_read_after_validity(self) -> None:
        quotation = self.make_quotation(line(1, '100'))
        transition_quotation_status(self.db, actor=ADMIN, quotation_id=quotation.id, status=QuotationStatus.SENT, today=TODAY)
        self.db.commit()

        expired = get_quotation(self.db, quotation_id=quotation.id, today=date(2024, 6, 10))
        self.assertEqual(expired.status, QuotationStatus.EXPIRED)
        self.db.commit()

        with self.session_factory() as other:
            stored = other.execute(select(Quotation.status).where(Quotation.id == quotation.id)).scalar_one()
        self.assertEqual(stored, QuotationStatus.EXPIRED)

    def test_list_reports_and_persists_lapsed_quotations_as_expired(self) -> None:
        lapsed = self.make_quotation(line(1, '100'), valid_until=date(2024, 5, 20))
        current = self.make_quotation(line(1, '100'), valid_until=date(2024, 7, 1))
        for quotation in (lapsed, current):
            transition_quotation_status(
                self.db, actor=ADMIN, quotation_id=quotation.id, status=QuotationStatus.SENT, today=TODAY
            )
        self.db.commit()
        later = date(2024, 6, 1)

        sent = list_quotations(self.db, actor=EXECUTIVE, status=QuotationStatus.SENT, today=later)
        self.assertEqual([quotation.id for quotation in sent], [current.id])

        expired = list_quotations(self.db, actor=EXECUTIVE, status=QuotationStatus.EXPIRED, today=later)
        self.assertEqual([quotation.id for quotation in expired], [lapsed.id])
        self.assertEqual(expired[0].status, QuotationStatus.EXPIRED)
        self.db.commit()

        with self.session_factory() as other:
            stored = other.execute(select(Quotation.status).where(Quotation.id == lapsed.id)).scalar_one()
        self.assertEqual(stored, QuotationStatus.EXPIRED)

    def test_unfiltered_list_flips_lapsed_quotations(self) -> None:
        quotation = self.make_quotation(line(1, '100'), valid_until=date(2024, 5, 20))
        transition_quotation_status(self.db, actor=ADMIN, quotation_id=quotation.id, status=QuotationStatus.SENT, today=TODAY)

        rows = list_quotations(self.db, actor=ADMIN, today=date(2024, 6, 1))
        self.assertEqual([row.status for row in rows], [QuotationStatus.EXPIRED])

    def test_list_filters_by_opportunity(self) -> None:
        linked = self.make_quotation(line(1, '100'), opportunity_id=42)
        self.make_quotation(line(1, '100'), opportunity_id=43)
        self.make_quotation(line(1, '100'))

        rows = list_quotations(self.db, actor=EXECUTIVE, opportunity_id=42, today=TODAY)
        self.assertEqual([row.id for row in rows], [linked.id])

    def test_expired_quotation_cannot_be_accepted(self) -> None:
        quotation = self.make_quotation(line(1, '100'))
        transition_quotation_status(self.db, actor=ADMIN, quotation_id=quotation.id, status=QuotationStatus.SENT, today=TODAY)
        with self.assertRaises(ConflictError):
            transition_quotation_status(
                self.db,
                actor=ADMIN,
                quotation_id=quotation.id,
                status=QuotationStatus.ACCEPTED,
                today=date(2024, 7, 1),
            )

    def test_executive_cannot_edit_when_inactive(self) -> None:
        quotation = self.make_quotation(line(1, '100'), actor=EXECUTIVE)
        inactive = replace(EXECUTIVE, active=False)
        with self.assertRaises(PermissionDeniedError):
            add_quotation_item(self.db, actor=inactive, quotation_id=quotation.id, item=line(1, '1'))

    def test_missing_quotation(self) -> None:
        with self.assertRaises(NotFoundError):
            get_quotation(self.db, quotation_id=999)

    def test_detail_lists_items_in_position_order(self) -> None:
        quotation = self.make_quotation(line(1, '1', description='first'), line(1, '2', description='second'))
        detail = quotation_detail(self.db, quotation)
        self.assertEqual([item['description'] for item in detail['items']], ['first', 'second'])
        self.assertEqual(detail['status'], 'DRAFT')
