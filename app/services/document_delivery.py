from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from app.models import DocumentType


@dataclass(frozen=True)
class RenderedDocument:
    filename: str
    content_type: str
    content: bytes


class PdfRenderer(Protocol):
    def render(self, *, document_type: DocumentType, document_id: int, document_number: str) -> RenderedDocument: ...


class EmailDispatcher(Protocol):
    def send(
        self,
        *,
        recipient: str,
        subject: str,
        body: str,
        attachment: RenderedDocument | None = None,
    ) -> None: ...
