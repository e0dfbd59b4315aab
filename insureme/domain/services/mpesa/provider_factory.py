"""
Provider Factory - one shared payment provider per process
"""
from __future__ import annotations

import threading

from insureme.core.circuit_breaker import get_mpesa_circuit_breaker
from insureme.core.logging import get_logger
from insureme.domain.services.mpesa.base_provider import PaymentProvider

logger = get_logger(__name__)

_provider: PaymentProvider | None = None
_lock = threading.Lock()


def get_payment_provider() -> PaymentProvider:
    """Daraja provider guarded by the M-Pesa circuit breaker"""
    global _provider
    if _provider is None:
        with _lock:
            if _provider is None:
                from insureme.domain.services.mpesa.daraja_provider import DarajaProvider

                _provider = DarajaProvider(circuit_breaker=get_mpesa_circuit_breaker())
                logger.info(
                    "Payment provider initialized",
                    extra_data={"provider": _provider.provider_name},
                )
    return _provider


def reset_providers() -> None:
    """Reset provider - tests only"""
    global _provider
    with _lock:
        _provider = None
