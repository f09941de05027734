import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.errors import DomainError, PartialFailureError
from app.routers import invoices, orders, quotations, records
from app.security.headers import install_security_headers
from app.security.sessions import install_auth_session_middleware

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

app = FastAPI(title='Sales CRM Documents')

install_auth_session_middleware(app)
install_security_headers(app)

app.include_router(quotations.router)
app.include_router(orders.router)
app.include_router(invoices.router)
app.include_router(records.router)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if isinstance(exc, PartialFailureError):
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.message, exc_info=exc.__cause__)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
