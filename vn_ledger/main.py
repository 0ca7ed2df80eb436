"""
VN Ledger Posting & Budget Control: FastAPI application.

This is the entry point for the application.
All routers are registered here.
"""

from fastapi import FastAPI

from vn_ledger.config import get_settings
from vn_ledger.log import configure_logging, get_logger
from vn_ledger.api.health import router as health_router
from vn_ledger.api.vouchers import router as vouchers_router
from vn_ledger.api.budget import router as budget_router
from vn_ledger.api.audit import router as audit_router
from vn_ledger.api.periods import router as periods_router

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
log = get_logger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Voucher posting, budget control and audit trail for VN accounting",
)

# Register routers
app.include_router(health_router)
app.include_router(vouchers_router)
app.include_router(budget_router)
app.include_router(audit_router)
app.include_router(periods_router)

log.info(
    "app_started",
    environment=settings.ENVIRONMENT,
    version=settings.APP_VERSION,
)
