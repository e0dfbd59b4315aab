"""
Admin Debug Endpoints - diagnostics without direct database access
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from insureme.api.dependencies.admin_auth import require_admin_api_key
from insureme.core.circuit_breaker import CircuitBreaker, get_mpesa_circuit_breaker

router = APIRouter()


class CircuitBreakerStatusResponse(BaseModel):
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    success_count: int
    half_open_calls: int
    retry_after_seconds: float = Field(
        description="Seconds until a retry is allowed (0 unless open)"
    )


@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="Circuit breaker status",
    responses={
        401: {"description": "Missing API key"},
        403: {"description": "Invalid API key"},
    },
)
async def get_circuit_breakers(
    _: None = Depends(require_admin_api_key),
) -> list[CircuitBreakerStatusResponse]:
    """State of every registered breaker"""
    # Make sure the M-Pesa breaker shows up even before the first push
    get_mpesa_circuit_breaker()
    return [
        CircuitBreakerStatusResponse(**breaker.snapshot())
        for breaker in CircuitBreaker.all_instances()
    ]
