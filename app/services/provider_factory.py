from __future__ import annotations

from functools import lru_cache

from app.config import settings
from app.services.document_delivery import EmailDispatcher, PdfRenderer
from app.services.log_document_delivery import LogEmailDispatcher, LogPdfRenderer


@lru_cache(maxsize=1)
def get_pdf_renderer() -> PdfRenderer:
    provider = settings.document_delivery.strip().lower()
    if provider != 'log':
        raise RuntimeError(f'Unknown document delivery provider: {settings.document_delivery}')
    return LogPdfRenderer()


@lru_cache(maxsize=1)
def get_email_dispatcher() -> EmailDispatcher:
    provider = settings.document_delivery.strip().lower()
    if provider != 'log':
        raise RuntimeError(f'Unknown document delivery provider: {settings.document_delivery}')
    return LogEmailDispatcher()
