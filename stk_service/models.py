from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from stk_service.database import Base


def utcnow() -> datetime:
    # Stored naive; every timestamp in the table is UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Receipt(Base):
    __tablename__ = "receipts"

    reference = Column(String, primary_key=True)        # ORDER-<ms> | RETRY-<ms>
    original_reference = Column(String, nullable=True)  # set on retries only
    transaction_id = Column(String, nullable=True)
    checkout_request_id = Column(String, nullable=True)
    merchant_request_id = Column(String, nullable=True)
    transaction_code = Column(String, nullable=True)    # M-Pesa receipt number
    amount = Column(Integer, nullable=True)
    loan_amount = Column(String, nullable=True)
    phone = Column(String, index=True, nullable=True)
    customer_name = Column(String, nullable=True)
    status = Column(String, nullable=True)              # see status.ReceiptStatus
    status_note = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=utcnow, index=True)
    is_retry = Column(Boolean, default=False, nullable=False)

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "original_reference": self.original_reference,
            "transaction_id": self.transaction_id,
            "checkout_request_id": self.checkout_request_id,
            "merchant_request_id": self.merchant_request_id,
            "transaction_code": self.transaction_code,
            "amount": self.amount,
            "loan_amount": self.loan_amount,
            "phone": self.phone,
            "customer_name": self.customer_name,
            "status": self.status,
            "status_note": self.status_note,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "is_retry": bool(self.is_retry),
        }
