"""Receipt persistence.

One row per reference: ``put`` upserts a single row, so writes to different
references never overwrite each other. Two writers racing on the *same*
reference are still last-writer-wins; there is no compare-and-swap.

Receipts handed out by the store are detached from their session. Changing
one has no effect on storage until it is passed back to ``put``.
"""
from typing import List, Optional

import structlog

from stk_service.models import Receipt

logger = structlog.get_logger(__name__)


class ReceiptStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, reference: str) -> Optional[Receipt]:
        db = self.session_factory()
        try:
            receipt = db.get(Receipt, reference)
            if receipt is not None:
                db.expunge(receipt)
            return receipt
        finally:
            db.close()

    def put(self, reference: str, receipt: Receipt) -> None:
        if receipt.reference is None:
            receipt.reference = reference
        elif receipt.reference != reference:
            raise ValueError(
                f"receipt reference {receipt.reference!r} does not match key {reference!r}"
            )

        db = self.session_factory()
        try:
            db.merge(receipt)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("receipt_stored", reference=reference, status=receipt.status)

    def list_by_phone(self, phone: str) -> List[Receipt]:
        db = self.session_factory()
        try:
            receipts = (
                db.query(Receipt)
                .filter_by(phone=phone)
                .order_by(Receipt.timestamp.desc(), Receipt.reference.desc())
                .all()
            )
            db.expunge_all()
            return receipts
        finally:
            db.close()
