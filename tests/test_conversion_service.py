from __future__ import annotations

from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.errors import ConflictError, PartialFailureError
from app.models import Quotation, QuotationItem, QuotationStatus, SalesOrder, SalesOrderStatus
from app.services.conversion_service import convert_quotation_to_order, duplicate_quotation
from app.services.document_service import get_quotation, list_order_items, list_quotation_items
from app.services.quotation_service import add_quotation_item, update_quotation_item
from tests.helpers import ADMIN, EXECUTIVE, TODAY, DatabaseTestCase, line


class ConvertQuotationTests(DatabaseTestCase):
    def test_accepted_quotation_becomes_new_order(self) -> None:
        quotation = self.make_accepted_quotation(line(2, '100', '10'), line(1, '50', '10'), notes='Rush delivery')

        order = convert_quotation_to_order(self.db, actor=EXECUTIVE, quotation_id=quotation.id, today=TODAY)

        self.assertEqual(order.status, SalesOrderStatus.NEW)
        self.assertEqual(order.total, Decimal('275.00'))
        self.assertEqual(order.source_quotation_id, quotation.id)
        self.assertEqual(order.company_id, quotation.company_id)
        self.assertEqual(order.contact_id, quotation.contact_id)
        self.assertEqual(order.order_date, TODAY)
        self.assertRegex(order.order_number, r'^SO-\d{4}-\d{5,}$')
        self.assertIn(quotation.number, order.notes)
        self.assertTrue(order.notes.endswith('Rush delivery'))
        self.assertEqual(order.created_by, EXECUTIVE.id)

        source_items = list_quotation_items(self.db, quotation_id=quotation.id)
        order_items = list_order_items(self.db, order_id=order.id)
        self.assertEqual(
            [(item.quantity, item.unit_price, item.tax_rate) for item in order_items],
            [(item.quantity, item.unit_price, item.tax_rate) for item in source_items],
        )
        self.assertTrue(all(item.sales_order_id == order.id for item in order_items))

        self.assertEqual(quotation.status, QuotationStatus.ACCEPTED)
        self.assertIsNotNone(quotation.converted_at)

    def test_second_conversion_is_rejected(self) -> None:
        quotation = self.make_accepted_quotation(line(1, '10'))
        convert_quotation_to_order(self.db, actor=ADMIN, quotation_id=quotation.id, today=TODAY)

        with self.assertRaises(ConflictError):
            convert_quotation_to_order(self.db, actor=ADMIN, quotation_id=quotation.id, today=TODAY)
        self.assertEqual(self.db.execute(select(func.count(SalesOrder.id))).scalar_one(), 1)

    def test_only_accepted_quotations_convert(self) -> None:
        quotation = self.make_quotation(line(1, '10'))
        with self.assertRaises(ConflictError):
            convert_quotation_to_order(self.db, actor=ADMIN, quotation_id=quotation.id, today=TODAY)
        self.assertEqual(self.db.execute(select(func.count(SalesOrder.id))).scalar_one(), 0)

    def test_failed_item_copy_leaves_no_order(self) -> None:
        quotation = self.make_accepted_quotation(line(1, '10'), line(2, '20'))
        self.db.commit()

        with patch(
            'app.services.conversion_service.SalesOrderItem',
            side_effect=OperationalError('INSERT INTO sales_order_items', {}, Exception('disk full')),
        ):
            with self.assertRaises(PartialFailureError):
                convert_quotation_to_order(self.db, actor=ADMIN, quotation_id=quotation.id, today=TODAY)

        self.assertEqual(self.db.execute(select(func.count(SalesOrder.id))).scalar_one(), 0)
        reloaded = get_quotation(self.db, quotation_id=quotation.id, today=TODAY)
        self.assertIsNone(reloaded.converted_at)

        order = convert_quotation_to_order(self.db, actor=ADMIN, quotation_id=quotation.id, today=TODAY)
        self.assertEqual(len(list_order_items(self.db, order_id=order.id)), 2)


class DuplicateQuotationTests(DatabaseTestCase):
    def test_duplicate_copies_items_into_new_draft(self) -> None:
        source = self.make_accepted_quotation(line(2, '100', '10'), line(1, '50'))

        duplicate = duplicate_quotation(self.db, actor=ADMIN, quotation_id=source.id, today=TODAY)

        self.assertNotEqual(duplicate.id, source.id)
        self.assertNotEqual(duplicate.number, source.number)
        self.assertEqual(duplicate.status, QuotationStatus.DRAFT)
        self.assertIsNone(duplicate.converted_at)
        self.assertEqual(duplicate.total, source.total)
        self.assertEqual(
            [(item.quantity, item.unit_price) for item in list_quotation_items(self.db, quotation_id=duplicate.id)],
            [(2, Decimal('100.00')), (1, Decimal('50.00'))],
        )

    def test_duplicate_is_independent_of_source(self) -> None:
        source = self.make_quotation(line(2, '100'), line(1, '50'))
        duplicate = duplicate_quotation(self.db, actor=ADMIN, quotation_id=source.id, today=TODAY)

        first = list_quotation_items(self.db, quotation_id=duplicate.id)[0]
        update_quotation_item(self.db, actor=ADMIN, quotation_id=duplicate.id, item_id=first.id, item=line(5, '100'))
        add_quotation_item(self.db, actor=ADMIN, quotation_id=duplicate.id, item=line(1, '1'))

        self.assertEqual(len(list_quotation_items(self.db, quotation_id=source.id)), 2)
        self.assertEqual(source.subtotal, Decimal('250.00'))
        self.assertEqual(duplicate.subtotal, Decimal('551.00'))

    def test_duplicate_of_converted_quotation_starts_unconverted(self) -> None:
        source = self.make_accepted_quotation(line(1, '10'))
        convert_quotation_to_order(self.db, actor=ADMIN, quotation_id=source.id, today=TODAY)

        duplicate = duplicate_quotation(self.db, actor=ADMIN, quotation_id=source.id, today=TODAY)
        self.assertIsNone(duplicate.converted_at)
        self.assertEqual(duplicate.status, QuotationStatus.DRAFT)

    def test_failed_item_copy_leaves_no_duplicate(self) -> None:
        source = self.make_quotation(line(1, '10'), line(2, '20'))
        self.db.commit()

        with patch(
            'app.services.conversion_service.QuotationItem',
            side_effect=OperationalError('INSERT INTO quotation_items', {}, Exception('disk full')),
        ):
            with self.assertRaises(PartialFailureError):
                duplicate_quotation(self.db, actor=ADMIN, quotation_id=source.id, today=TODAY)

        self.assertEqual(self.db.execute(select(func.count(Quotation.id))).scalar_one(), 1)
        item_owners = self.db.execute(select(QuotationItem.quotation_id)).scalars().all()
        self.assertEqual(item_owners, [source.id, source.id])

        duplicate = duplicate_quotation(self.db, actor=ADMIN, quotation_id=source.id, today=TODAY)
        self.assertEqual(len(list_quotation_items(self.db, quotation_id=duplicate.id)), 2)
