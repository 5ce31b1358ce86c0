import logging

from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter()

log = logging.getLogger(__name__)


@router.get("/health", tags=["health"])
def health(request: Request):
    db_ok = False
    try:
        db_ok = request.app.state.database.ping()
    except SQLAlchemyError:
        log.exception("health check: database unreachable")
    payment_ok = request.app.state.payment_gateway.health_check()

    return {
        "status": "ok" if db_ok and payment_ok else "degraded",
        "db": db_ok,
        "payment_gateway": payment_ok,
    }
