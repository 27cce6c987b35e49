"""Withdrawal-fee payment flow.

A payment attempt is one ``Receipt``. It is created when the STK push is
requested (``pending``, or ``stk_failed`` / ``error`` when the push could not
be sent), reconciled at most once by the provider callback (``processing`` or
``cancelled``) and, once failed, may be retried under a new reference that
points back at it. The original receipt is never touched by a retry.

Gateway failures are always stored before they are raised, so a status query
or a retry has something to act on.
"""
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import structlog
from pydantic import ValidationError

from stk_service.errors import (
    GatewayRejected,
    InvalidAmount,
    InvalidPhoneFormat,
    InvalidTransition,
    NotFound,
    NotRetryable,
    TransportFailure,
)
from stk_service.gateway import GatewayTransportError
from stk_service.models import Receipt, utcnow
from stk_service.phone import normalize_phone
from stk_service.schemas import CallbackPayload, CallbackResult
from stk_service.status import ReceiptStatus, advance, is_retryable

logger = structlog.get_logger(__name__)

CUSTOMER_PLACEHOLDER = "N/A"
GATEWAY_CUSTOMER_NAME = "Customer"

ORDER_PREFIX = "ORDER"
RETRY_PREFIX = "RETRY"

SYSTEM_ERROR_MESSAGE = "System error occurred. Please try again later."
STK_FAILED_NOTE = "STK push failed to send. Please try again or contact support."

TRANSPORT_ERROR_MESSAGES = {
    "RATE_LIMIT_EXCEEDED": "Rate limit exceeded. Please try again later.",
    "PERSONAL_KYC_VERIFICATION_REQUIRED": "Account verification required. Please contact support.",
    "CHANNEL_KYC_VERIFICATION_REQUIRED": "Channel verification required. Please contact support.",
    "INSUFFICIENT_SERVICE_BALANCE": "Service temporarily unavailable. Please try again later.",
}

RESULT_CODE_NOTES = {
    1032: (
        "You cancelled the payment request on your phone. Please try again to "
        "complete your loan withdrawal. If you had an issue contact us using the "
        "chat button for quick help."
    ),
    1037: (
        "The request timed out. You did not enter your M-Pesa PIN to complete "
        "withdrawal request. Please try again."
    ),
    2001: (
        "Payment failed due to insufficient M-Pesa balance. Please top up and "
        "try to withdraw again."
    ),
}
CALLBACK_FAILED_NOTE = "Payment failed or was cancelled."


@dataclass
class Initiation:
    receipt: Receipt
    message: str


def round_amount(amount) -> int:
    # Half-up, the way the front end rounds.
    return int(math.floor(amount + 0.5))


def parse_amount(value, max_amount: int) -> int:
    """Validate a requested fee and return it as a whole number of shillings."""
    if value is None or isinstance(value, bool):
        raise InvalidAmount()
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            raise InvalidAmount()
    if not isinstance(value, (int, float)):
        raise InvalidAmount()
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmount()
    if value < 1:
        raise InvalidAmount()

    amount = round_amount(value)
    if amount > max_amount:
        raise InvalidAmount(f"Amount must be <= {max_amount}")
    return amount


def loan_amount_text(value) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def transport_failure_message(error: GatewayTransportError) -> str:
    """Turn a gateway transport failure into the note shown to the customer."""
    code = error.error_code
    if code == "RATE_LIMIT_EXCEEDED":
        return error.details.get("message") or TRANSPORT_ERROR_MESSAGES[code]
    if code in TRANSPORT_ERROR_MESSAGES:
        return TRANSPORT_ERROR_MESSAGES[code]
    return error.error or SYSTEM_ERROR_MESSAGE


def callback_failure_note(result: CallbackResult) -> str:
    if result.code in RESULT_CODE_NOTES:
        return RESULT_CODE_NOTES[result.code]
    return result.ResultDesc or CALLBACK_FAILED_NOTE


class PaymentOrchestrator:
    def __init__(self, store, gateway, settings, clock: Optional[Callable[[], float]] = None):
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.clock = clock or time.time

    def new_reference(self, prefix: str) -> str:
        # Millisecond resolution; two pushes in the same millisecond collide.
        return f"{prefix}-{int(self.clock() * 1000)}"

    def success_note(self, reference: str) -> str:
        return (
            "Your fee payment has been received and verified. "
            f"Loan Reference: {reference}. "
            "Your loan is now in the final processing stage and funds are reserved "
            "for disbursement. You will receive the amount in your selected account "
            "within 24 hours, an sms will be sent to you. "
            f"Thank you for choosing {self.settings.brand_name}."
        )

    # -- initiate / retry ---------------------------------------------------

    def initiate(self, phone, amount, loan_amount=None) -> Initiation:
        formatted_phone = normalize_phone(phone)
        fee = parse_amount(amount, self.settings.max_amount)

        reference = self.new_reference(ORDER_PREFIX)
        receipt = Receipt(
            reference=reference,
            amount=fee,
            loan_amount=loan_amount_text(loan_amount) or self.settings.default_loan_amount,
            phone=formatted_phone,
            customer_name=CUSTOMER_PLACEHOLDER,
            is_retry=False,
        )

        logger.info(
            "stk_push_initiating",
            reference=reference,
            phone=formatted_phone,
            amount=receipt.amount,
        )

        pending_note = (
            f"STK push sent to {formatted_phone}. Please enter your M-Pesa PIN to "
            "complete the fee payment and loan disbursement. Withdrawal started."
        )
        return self._push(
            receipt,
            pending_note=pending_note,
            default_message="STK push sent, check your phone",
            rejected_message="Failed to initiate payment",
        )

    def retry(self, original_reference: str) -> Initiation:
        original = self.store.get(original_reference)
        if original is None:
            raise NotFound("Original withdrawal not found", original_reference=original_reference)

        if not is_retryable(original.status):
            raise NotRetryable(
                "This withdrawal cannot be retried",
                original_reference=original_reference,
                current_status=original.status,
            )

        reference = self.new_reference(RETRY_PREFIX)
        receipt = Receipt(
            reference=reference,
            original_reference=original_reference,
            amount=original.amount,
            loan_amount=original.loan_amount or self.settings.default_loan_amount,
            phone=original.phone,
            customer_name=original.customer_name or CUSTOMER_PLACEHOLDER,
            is_retry=True,
        )

        logger.info(
            "retry_initiating",
            original_reference=original_reference,
            reference=reference,
            phone=receipt.phone,
            amount=receipt.amount,
        )

        pending_note = (
            f"Retry initiated for failed withdrawal {original_reference}. STK push "
            f"sent to {receipt.phone}. Please enter your M-Pesa PIN."
        )
        return self._push(
            receipt,
            pending_note=pending_note,
            default_message="Retry STK push sent, check your phone",
            rejected_message="Retry failed to initiate",
            original_reference=original_reference,
        )

    def _push(self, receipt: Receipt, pending_note: str, default_message: str,
              rejected_message: str, **extra: Any) -> Initiation:
        customer_name = receipt.customer_name
        if not customer_name or customer_name == CUSTOMER_PLACEHOLDER:
            customer_name = GATEWAY_CUSTOMER_NAME

        try:
            result = self.gateway.initiate(
                amount=receipt.amount,
                phone=receipt.phone,
                reference=receipt.reference,
                customer_name=customer_name,
                callback_url=self.settings.callback_url,
            )
        except GatewayTransportError as e:
            logger.error(
                "gateway_transport_failed",
                reference=receipt.reference,
                error=str(e),
                status_code=e.status_code,
                body=e.body,
            )
            receipt.status = advance(None, ReceiptStatus.ERROR).value
            receipt.status_note = transport_failure_message(e)
            receipt.timestamp = utcnow()
            self.store.put(receipt.reference, receipt)
            raise TransportFailure(
                receipt.status_note, receipt=receipt, reference=receipt.reference, **extra
            )

        receipt.transaction_id = result.transaction_id
        receipt.checkout_request_id = result.checkout_request_id
        receipt.merchant_request_id = result.merchant_request_id
        receipt.transaction_code = None
        receipt.timestamp = utcnow()

        if result.initiated:
            # The callback for this push may already have been reconciled.
            stored = self.store.get(receipt.reference)
            try:
                receipt.status = advance(stored.status if stored else None, ReceiptStatus.PENDING).value
            except InvalidTransition:
                logger.warning(
                    "callback_preceded_initiation",
                    reference=receipt.reference,
                    current_status=stored.status,
                )
                return Initiation(receipt=stored, message=result.message or default_message)
            receipt.status_note = pending_note
            self.store.put(receipt.reference, receipt)
            return Initiation(receipt=receipt, message=result.message or default_message)

        logger.warning(
            "stk_push_rejected",
            reference=receipt.reference,
            gateway_status=result.status,
            error=result.error,
        )
        receipt.status = advance(None, ReceiptStatus.STK_FAILED).value
        receipt.status_note = result.error or STK_FAILED_NOTE
        self.store.put(receipt.reference, receipt)
        raise GatewayRejected(
            result.error or rejected_message,
            receipt=receipt,
            reference=receipt.reference,
            **extra,
        )

    # -- callback -----------------------------------------------------------

    def reconcile(self, payload: Dict[str, Any]) -> Optional[Receipt]:
        """Apply a provider callback to its receipt.

        Returns the updated receipt, or None when the callback was dropped.
        Dropped callbacks are logged; nothing here is reported back to the
        provider.
        """
        try:
            callback = CallbackPayload.model_validate(payload)
        except ValidationError as e:
            logger.error("callback_rejected", reason="malformed_payload", errors=str(e))
            return None

        reference = callback.external_reference
        if not reference:
            logger.error("callback_rejected", reason="missing_reference")
            return None

        existing = self.store.get(reference)
        receipt = existing if existing is not None else Receipt(reference=reference)
        result = callback.result or CallbackResult()

        target = ReceiptStatus.PROCESSING if callback.succeeded else ReceiptStatus.CANCELLED
        try:
            advance(receipt.status, target)
        except InvalidTransition:
            logger.warning(
                "callback_rejected",
                reason="invalid_transition",
                reference=reference,
                current_status=receipt.status,
                target_status=target.value,
            )
            return None

        if existing is None:
            logger.warning("callback_unknown_reference", reference=reference)

        receipt.transaction_id = callback.transaction_id or receipt.transaction_id
        receipt.checkout_request_id = callback.checkout_request_id or receipt.checkout_request_id
        receipt.merchant_request_id = callback.merchant_request_id or receipt.merchant_request_id
        if result.Amount:
            try:
                receipt.amount = parse_amount(result.Amount, self.settings.max_amount)
            except InvalidAmount:
                logger.warning("callback_amount_ignored", reference=reference, amount=result.Amount)
        receipt.loan_amount = receipt.loan_amount or self.settings.default_loan_amount
        receipt.phone = self._callback_phone(result.Phone, receipt.phone, reference)
        receipt.customer_name = result.full_name or receipt.customer_name or CUSTOMER_PLACEHOLDER
        receipt.timestamp = callback.timestamp_utc or utcnow()
        receipt.status = target.value

        if target is ReceiptStatus.PROCESSING:
            receipt.transaction_code = result.MpesaReceiptNumber
            receipt.status_note = self.success_note(reference)
        else:
            receipt.transaction_code = None
            receipt.status_note = callback_failure_note(result)

        self.store.put(reference, receipt)
        logger.info(
            "callback_reconciled",
            reference=reference,
            status=receipt.status,
            result_code=result.ResultCode,
            transaction_code=receipt.transaction_code,
        )
        return receipt

    def _callback_phone(self, raw: Optional[str], current: Optional[str], reference: str):
        if not raw:
            return current
        try:
            return normalize_phone(raw)
        except InvalidPhoneFormat:
            logger.warning("callback_phone_ignored", reference=reference, phone=raw)
            return current

    # -- queries ------------------------------------------------------------

    def get_receipt(self, reference: str) -> Receipt:
        receipt = self.store.get(reference)
        if receipt is None:
            raise NotFound("Receipt not found")
        return receipt

    def last_withdrawal(self, phone) -> Dict[str, Any]:
        formatted_phone = normalize_phone(phone)
        receipts = self.store.list_by_phone(formatted_phone)

        if not receipts:
            return {
                "has_previous": False,
                "total_withdrawals": 0,
                "message": "No previous withdrawals found",
            }

        last = receipts[0]
        return {
            "has_previous": True,
            "last_withdrawal": {
                "reference": last.reference,
                "status": last.status,
                "amount": last.amount,
                "loan_amount": last.loan_amount,
                "timestamp": last.timestamp.isoformat() if last.timestamp else None,
                "status_note": last.status_note,
                "can_retry": is_retryable(last.status),
            },
            "total_withdrawals": len(receipts),
        }
