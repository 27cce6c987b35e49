from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class PaymentRequest(BaseModel):
    # Untyped so a missing or malformed field is reported by the payment flow
    # (400 with a message) rather than as a 422 validation error.
    phone: Any = None
    amount: Any = None
    loan_amount: Any = None


class CallbackResult(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    # Kept as sent; only a JSON number counts as a result code.
    ResultCode: Any = None
    ResultDesc: Optional[str] = None
    MpesaReceiptNumber: Optional[str] = None
    Amount: Optional[float] = None
    Phone: Optional[str] = None
    Name: Optional[str] = None
    FirstName: Optional[str] = None
    MiddleName: Optional[str] = None
    LastName: Optional[str] = None

    @property
    def code(self) -> Optional[float]:
        if isinstance(self.ResultCode, bool) or not isinstance(self.ResultCode, (int, float)):
            return None
        return self.ResultCode

    @property
    def full_name(self) -> Optional[str]:
        if self.Name:
            return self.Name
        parts = [p for p in (self.FirstName, self.MiddleName, self.LastName) if p]
        return " ".join(parts) or None


class CallbackPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    external_reference: Optional[str] = None
    status: Optional[str] = None
    success: Any = None
    result: Optional[CallbackResult] = None
    transaction_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, value):
        """Unparseable timestamps are dropped; the receipt falls back to now."""
        if value is None or isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
        return None

    @property
    def succeeded(self) -> bool:
        completed = isinstance(self.status, str) and self.status.lower() == "completed"
        if completed and self.success is True:
            return True
        return self.result is not None and self.result.code == 0

    @property
    def timestamp_utc(self) -> Optional[datetime]:
        if self.timestamp is None or self.timestamp.tzinfo is None:
            return self.timestamp
        return self.timestamp.astimezone(timezone.utc).replace(tzinfo=None)
