import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool

from stk_service.config import get_settings
from stk_service.database import SessionLocal
from stk_service.gateway import SwiftWalletClient
from stk_service.orchestrator import PaymentOrchestrator
from stk_service.presenter import render_receipt_pdf
from stk_service.schemas import PaymentRequest
from stk_service.store import ReceiptStore

logger = structlog.get_logger(__name__)

router = APIRouter()

CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Success"}


def get_orchestrator() -> PaymentOrchestrator:
    settings = get_settings()
    return PaymentOrchestrator(
        store=ReceiptStore(SessionLocal),
        gateway=SwiftWalletClient.from_settings(settings),
        settings=settings,
    )


@router.post("/pay")
def pay(request: PaymentRequest, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    initiation = orchestrator.initiate(request.phone, request.amount, request.loan_amount)
    return {
        "success": True,
        "message": initiation.message,
        "reference": initiation.receipt.reference,
        "receipt": initiation.receipt.to_dict(),
    }


@router.post("/callback")
async def callback(request: Request, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    # The provider redelivers on anything but this ack, so nothing below may
    # change the response.
    try:
        payload = await request.json()
    except ValueError:
        logger.error("callback_reconcile_failed", reason="body_not_json")
        return CALLBACK_ACK

    logger.info("callback_received", payload=payload)
    if not isinstance(payload, dict):
        logger.error("callback_reconcile_failed", reason="body_not_object")
        return CALLBACK_ACK

    try:
        await run_in_threadpool(orchestrator.reconcile, payload)
    except Exception:
        logger.exception(
            "callback_reconcile_failed",
            reference=payload.get("external_reference"),
        )
    return CALLBACK_ACK


@router.get("/receipt/{reference}")
def get_receipt(reference: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    receipt = orchestrator.get_receipt(reference)
    return {"success": True, "receipt": receipt.to_dict()}


@router.get("/receipt/{reference}/pdf")
def get_receipt_pdf(reference: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    receipt = orchestrator.get_receipt(reference)
    content = render_receipt_pdf(receipt, orchestrator.settings)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=receipt-{receipt.reference}.pdf"},
    )


@router.get("/check-withdrawal/{phone}")
def check_withdrawal(phone: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    summary = orchestrator.last_withdrawal(phone)
    return {"success": True, **summary}


@router.post("/retry/{reference}")
def retry(reference: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    initiation = orchestrator.retry(reference)
    return {
        "success": True,
        "message": initiation.message,
        "reference": initiation.receipt.reference,
        "original_reference": reference,
        "receipt": initiation.receipt.to_dict(),
    }


@router.get("/health")
def health():
    return {"status": "ok"}
