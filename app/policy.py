"""Single authorization policy for every document mutation and audit read.

Services call :func:`enforce` before touching the database; nothing else in
the code base compares roles.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from app.auth import Principal, Role
from app.errors import PermissionDeniedError
from app.models import Quotation, QuotationStatus

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    DOCUMENT_READ = 'DOCUMENT_READ'
    QUOTATION_CREATE = 'QUOTATION_CREATE'
    QUOTATION_EDIT = 'QUOTATION_EDIT'
    QUOTATION_TRANSITION = 'QUOTATION_TRANSITION'
    QUOTATION_CONVERT = 'QUOTATION_CONVERT'
    QUOTATION_DUPLICATE = 'QUOTATION_DUPLICATE'
    ORDER_CREATE = 'ORDER_CREATE'
    ORDER_EDIT = 'ORDER_EDIT'
    ORDER_TRANSITION = 'ORDER_TRANSITION'
    INVOICE_CREATE = 'INVOICE_CREATE'
    INVOICE_MARK_PAID = 'INVOICE_MARK_PAID'
    DOCUMENT_EMAIL = 'DOCUMENT_EMAIL'
    RECORD_DELETE = 'RECORD_DELETE'
    AUDIT_LOG_READ = 'AUDIT_LOG_READ'


_EXECUTIVE_OPERATIONS = {
    Operation.DOCUMENT_READ,
    Operation.QUOTATION_CREATE,
    Operation.QUOTATION_EDIT,
    Operation.QUOTATION_TRANSITION,
    Operation.QUOTATION_CONVERT,
    Operation.QUOTATION_DUPLICATE,
    Operation.ORDER_CREATE,
    Operation.ORDER_EDIT,
    Operation.ORDER_TRANSITION,
    Operation.INVOICE_CREATE,
    Operation.DOCUMENT_EMAIL,
}


def _executive_may_delete(principal: Principal, resource: Any) -> bool:
    # Executives may only discard their own drafts. Item deletes are checked against the owning quotation.
    if isinstance(resource, Quotation):
        return resource.created_by == principal.id and resource.status == QuotationStatus.DRAFT
    return False


def evaluate(principal: Principal, operation: Operation, resource: Any = None) -> bool:
    if not principal.active:
        return False
    if principal.role == Role.ADMIN:
        return True
    if principal.role == Role.SALES_MANAGER:
        return operation != Operation.AUDIT_LOG_READ
    if principal.role == Role.SALES_EXECUTIVE:
        if operation == Operation.RECORD_DELETE:
            return _executive_may_delete(principal, resource)
        return operation in _EXECUTIVE_OPERATIONS
    return False


def enforce(principal: Principal, operation: Operation, resource: Any = None) -> None:
    if evaluate(principal, operation, resource):
        return
    logger.warning(
        'Denied %s for principal %s (%s)',
        operation.value,
        principal.id,
        principal.role.value,
    )
    raise PermissionDeniedError(f'Not allowed to perform {operation.value.lower()}')
