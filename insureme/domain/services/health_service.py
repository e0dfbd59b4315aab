"""
Health check service - dependency checks.

- liveness: is the process up (no dependency checks)
- readiness: database reachable, M-Pesa circuit not open
"""
from typing import Any

from sqlalchemy import text

from insureme.core.circuit_breaker import get_mpesa_circuit_breaker
from insureme.core.logging import get_logger
from insureme.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# Filtered messages - no infrastructure details
_ERROR_DB = "error: db_unavailable"
_ERROR_MPESA = "error: mpesa_circuit_open"


async def _check_db(session_factory=None) -> str:
    """Run a trivial query against the database"""
    factory = session_factory or AsyncSessionLocal
    try:
        async with factory() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


def _check_mpesa() -> str:
    breaker = get_mpesa_circuit_breaker()
    if breaker.is_open:
        return _ERROR_MPESA
    return _CHECK_OK


async def check_readiness(session_factory=None) -> dict[str, Any]:
    """
    Readiness check across dependencies.

    status is "healthy" when every check is "ok", "degraded" otherwise.
    """
    checks = {
        "db": await _check_db(session_factory),
        "mpesa": _check_mpesa(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks}
