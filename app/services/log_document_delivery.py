from __future__ import annotations

import logging
from collections import deque

from app.models import DocumentType
from app.services.document_delivery import RenderedDocument

logger = logging.getLogger(__name__)

SENT_HISTORY_LIMIT = 100


class LogPdfRenderer:
    """Stand-in renderer used until a real PDF service is configured."""

    def render(self, *, document_type: DocumentType, document_id: int, document_number: str) -> RenderedDocument:
        content = f'{document_type.value} {document_number} (id {document_id})\n'.encode('utf-8')
        return RenderedDocument(
            filename=f'{document_number}.pdf',
            content_type='application/pdf',
            content=content,
        )


class LogEmailDispatcher:
    """Logs outgoing mail and keeps only the most recent payloads."""

    def __init__(self, history_limit: int = SENT_HISTORY_LIMIT) -> None:
        self.sent: deque[dict] = deque(maxlen=history_limit)

    def send(
        self,
        *,
        recipient: str,
        subject: str,
        body: str,
        attachment: RenderedDocument | None = None,
    ) -> None:
        payload = {
            'recipient': recipient,
            'subject': subject,
            'attachment': attachment.filename if attachment else None,
            'status': 'STUB_SENT',
        }
        self.sent.append(payload)
        logger.info('Email stub sent to %s: %s (attachment %s)', recipient, subject, payload['attachment'])
