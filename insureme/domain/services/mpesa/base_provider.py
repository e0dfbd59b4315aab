"""
Payment provider interface.

The ledger depends only on this interface; Daraja is the one implementation.
A callback outcome is a tagged union: PaymentSucceeded or PaymentFailed.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Union


@dataclass(frozen=True)
class PushResult:
    """Acknowledgement of a push request - not the payment outcome"""
    success: bool
    checkout_request_id: str | None = None
    merchant_request_id: str | None = None
    response_description: str | None = None


@dataclass(frozen=True)
class PaymentSucceeded:
    checkout_request_id: str
    receipt: str | None
    amount: Decimal | None
    phone: str | None
    transaction_date: datetime | None


@dataclass(frozen=True)
class PaymentFailed:
    checkout_request_id: str
    code: str
    description: str | None


PaymentOutcome = Union[PaymentSucceeded, PaymentFailed]


class QueryStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StatusQueryResult:
    """Live state of a push as the provider reports it, independent of any callback"""
    checkout_request_id: str
    status: QueryStatus
    result_code: str | None = None
    result_description: str | None = None


class PaymentProvider(ABC):
    """Mobile-money push provider"""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Short provider name for logs"""

    @abstractmethod
    async def push(
        self,
        phone: str,
        amount: Decimal,
        reference: str,
        description: str,
    ) -> PushResult:
        """
        Ask the provider to prompt the payer's handset.

        Args:
            phone: normalized +254 number
            amount: amount in KES
            reference: account reference shown to the payer
            description: short transaction description

        Raises:
            MpesaError: transport failure or non-JSON reply
            CircuitBreakerOpenError: provider marked unavailable
        """

    @abstractmethod
    def validate_callback(self, payload: Any) -> None:
        """
        Check the callback envelope before parsing.

        Raises:
            PaymentCallbackMalformed: envelope missing or incomplete
        """

    @abstractmethod
    def interpret(self, payload: dict) -> PaymentOutcome:
        """Normalize a validated callback into an outcome"""

    @abstractmethod
    async def query_status(self, checkout_request_id: str) -> StatusQueryResult:
        """
        Ask the provider where a push stands.

        Raises:
            MpesaError: transport failure, or the provider refused the query
            CircuitBreakerOpenError: provider marked unavailable
        """
