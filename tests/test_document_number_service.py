from __future__ import annotations

import unittest
from datetime import datetime, timezone

from app.models import DocumentType
from app.services.document_number_service import (
    allocate_document_number,
    format_document_number,
    next_sequence_value,
)
from tests.helpers import DatabaseTestCase


class FormatDocumentNumberTests(unittest.TestCase):
    def test_layout(self) -> None:
        self.assertEqual(
            format_document_number(DocumentType.QUOTATION, year=2024, month=5, sequence=14),
            'QT-2024-05014',
        )
        self.assertEqual(
            format_document_number(DocumentType.SALES_ORDER, year=2024, month=3, sequence=77),
            'SO-2024-03077',
        )
        self.assertEqual(
            format_document_number(DocumentType.INVOICE, year=2025, month=12, sequence=1),
            'INV-2025-12001',
        )

    def test_sequence_wider_than_three_digits_is_kept(self) -> None:
        self.assertEqual(
            format_document_number(DocumentType.QUOTATION, year=2024, month=5, sequence=1234),
            'QT-2024-051234',
        )


class DocumentSequenceTests(DatabaseTestCase):
    def test_sequence_increments_per_type_and_period(self) -> None:
        values = [
            next_sequence_value(self.db, document_type=DocumentType.QUOTATION, year=2024, month=5)
            for _ in range(3)
        ]
        self.assertEqual(values, [1, 2, 3])
        self.assertEqual(next_sequence_value(self.db, document_type=DocumentType.SALES_ORDER, year=2024, month=5), 1)
        self.assertEqual(next_sequence_value(self.db, document_type=DocumentType.QUOTATION, year=2024, month=6), 1)

    def test_allocated_numbers_are_unique(self) -> None:
        at = datetime(2024, 5, 10, 9, 30, tzinfo=timezone.utc)
        numbers = [allocate_document_number(self.db, document_type=DocumentType.INVOICE, at=at) for _ in range(25)]
        self.assertEqual(len(set(numbers)), 25)
        self.assertEqual(numbers[0], 'INV-2024-05001')
        self.assertEqual(numbers[-1], 'INV-2024-05025')

    def test_sequence_survives_commit(self) -> None:
        at = datetime(2024, 5, 10, tzinfo=timezone.utc)
        allocate_document_number(self.db, document_type=DocumentType.QUOTATION, at=at)
        self.db.commit()
        with self.session_factory() as other:
            number = allocate_document_number(other, document_type=DocumentType.QUOTATION, at=at)
            other.commit()
        self.assertEqual(number, 'QT-2024-05002')


if __name__ == '__main__':
    unittest.main()
