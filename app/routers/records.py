from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.schemas import AuditLogEntryOut, DeleteRecordIn
from app.services.audit_service import delete_record, list_audit_log

router = APIRouter(tags=['records'])


@router.delete('/records/{table_name}/{record_id}', status_code=204)
def delete_record_route(
    table_name: str,
    record_id: int,
    payload: DeleteRecordIn | None = Body(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    delete_record(
        db,
        actor=principal,
        table_name=table_name,
        record_id=record_id,
        reason=payload.reason if payload else None,
    )
    db.commit()
    return Response(status_code=204)


@router.get('/audit-log', response_model=list[AuditLogEntryOut])
def audit_log_route(
    table_name: str | None = None,
    limit: int = Query(500, ge=1, le=500),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return list_audit_log(db, actor=principal, table_name=table_name, limit=limit)
