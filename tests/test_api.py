from datetime import datetime

import requests

from stk_service.models import Receipt


def add_receipt(store, reference="ORDER-100", status="pending", phone="254712345678", **fields):
    store.put(reference, Receipt(
        reference=reference,
        amount=fields.pop("amount", 50),
        loan_amount="50000",
        phone=phone,
        customer_name="N/A",
        status=status,
        status_note=fields.pop("status_note", "note"),
        timestamp=fields.pop("timestamp", datetime(2024, 1, 1, 12, 0)),
        **fields,
    ))


def test_pay_success(client, mock_gateway, initiated):
    mock_gateway(initiated)

    response = client.post("/pay", json={"phone": "0712345678", "amount": 50, "loan_amount": 25000})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "STK push initiated"
    assert body["reference"].startswith("ORDER-")
    assert body["receipt"]["status"] == "pending"
    assert body["receipt"]["phone"] == "254712345678"
    assert body["receipt"]["amount"] == 50
    assert body["receipt"]["loan_amount"] == "25000"


def test_pay_invalid_phone(client, mock_gateway):
    post = mock_gateway({"success": True})

    response = client.post("/pay", json={"phone": "12", "amount": 50})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid phone format"}
    post.assert_not_called()


def test_pay_missing_phone(client):
    response = client.post("/pay", json={"amount": 50})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid phone format"


def test_pay_invalid_amount(client):
    response = client.post("/pay", json={"phone": "0712345678", "amount": 0})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Amount must be >= 1"}


def test_pay_non_numeric_amount(client, mock_gateway):
    post = mock_gateway({"success": True})

    response = client.post("/pay", json={"phone": "0712345678", "amount": "abc"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Amount must be >= 1"}
    post.assert_not_called()


def test_pay_nan_amount(client, mock_gateway):
    post = mock_gateway({"success": True})

    response = client.post(
        "/pay",
        content=b'{"phone": "0712345678", "amount": NaN}',
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Amount must be >= 1"}
    post.assert_not_called()


def test_pay_amount_above_limit(client, store, mock_gateway):
    post = mock_gateway({"success": True})

    response = client.post("/pay", json={"phone": "0712345678", "amount": 1e30})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Amount must be <= 250000"}
    post.assert_not_called()
    assert store.list_by_phone("254712345678") == []


def test_pay_numeric_phone(client, mock_gateway):
    post = mock_gateway({"success": True})

    response = client.post("/pay", json={"phone": 712345678, "amount": 50})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid phone format"}
    post.assert_not_called()


def test_pay_numeric_string_amount(client, mock_gateway, initiated):
    mock_gateway(initiated)

    response = client.post("/pay", json={"phone": "0712345678", "amount": "50"})

    assert response.status_code == 200
    assert response.json()["receipt"]["amount"] == 50


def test_pay_missing_credential(client, orchestrator):
    orchestrator.gateway.api_key = ""

    response = client.post("/pay", json={"phone": "0712345678", "amount": 50})

    assert response.status_code == 500
    assert response.json()["error"] == "Server configuration error: API key not set"


def test_pay_gateway_rejection(client, mock_gateway):
    mock_gateway({"success": False, "error": "Invalid channel"})

    response = client.post("/pay", json={"phone": "0712345678", "amount": 50})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Invalid channel"
    assert body["receipt"]["status"] == "stk_failed"


def test_pay_gateway_unreachable(client, mock_gateway):
    mock_gateway(side_effect=requests.ConnectionError("refused"))

    response = client.post("/pay", json={"phone": "0712345678", "amount": 50})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "System error occurred. Please try again later."
    assert body["receipt"]["status"] == "error"


def test_callback_always_acknowledges(client, store):
    add_receipt(store)

    response = client.post("/callback", json={
        "external_reference": "ORDER-100",
        "status": "completed",
        "success": True,
        "result": {"ResultCode": 0, "MpesaReceiptNumber": "MPX1"},
    })

    assert response.status_code == 200
    assert response.json() == {"ResultCode": 0, "ResultDesc": "Success"}
    assert store.get("ORDER-100").status == "processing"


def test_callback_string_result_code_is_not_success(client, store):
    add_receipt(store)

    response = client.post("/callback", json={
        "external_reference": "ORDER-100",
        "result": {"ResultCode": "0", "MpesaReceiptNumber": "MPX1"},
    })

    assert response.json() == {"ResultCode": 0, "ResultDesc": "Success"}
    stored = store.get("ORDER-100")
    assert stored.status == "cancelled"
    assert stored.transaction_code is None


def test_callback_acknowledges_garbage(client):
    for content in (b"not json", b"[1, 2]", b'{"result": 5}'):
        response = client.post(
            "/callback", content=content, headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 200
        assert response.json() == {"ResultCode": 0, "ResultDesc": "Success"}


def test_callback_acknowledges_internal_failure(client, orchestrator, mocker):
    mocker.patch.object(orchestrator, "reconcile", side_effect=RuntimeError("disk full"))

    response = client.post("/callback", json={"external_reference": "ORDER-100"})

    assert response.status_code == 200
    assert response.json() == {"ResultCode": 0, "ResultDesc": "Success"}


def test_get_receipt(client, store):
    add_receipt(store)

    response = client.get("/receipt/ORDER-100")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["receipt"]["reference"] == "ORDER-100"
    assert response.json()["receipt"]["timestamp"] == "2024-01-01T12:00:00"


def test_get_receipt_not_found(client):
    response = client.get("/receipt/ORDER-missing")

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Receipt not found"}


def test_get_receipt_pdf(client, store):
    add_receipt(store, status="cancelled", status_note="You cancelled <the> payment & more")

    response = client.get("/receipt/ORDER-100/pdf")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert "receipt-ORDER-100.pdf" in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


def test_get_receipt_pdf_not_found(client):
    response = client.get("/receipt/ORDER-missing/pdf")

    assert response.status_code == 404


def test_check_withdrawal(client, store):
    add_receipt(store, "ORDER-1", status="processing", timestamp=datetime(2024, 1, 1))
    add_receipt(store, "ORDER-2", status="stk_failed", timestamp=datetime(2024, 1, 2))

    response = client.get("/check-withdrawal/0712345678")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["has_previous"] is True
    assert body["total_withdrawals"] == 2
    assert body["last_withdrawal"]["reference"] == "ORDER-2"
    assert body["last_withdrawal"]["can_retry"] is True


def test_check_withdrawal_no_history(client):
    response = client.get("/check-withdrawal/254712345678")

    assert response.status_code == 200
    assert response.json()["has_previous"] is False


def test_check_withdrawal_invalid_phone(client):
    response = client.get("/check-withdrawal/123")

    assert response.status_code == 400


def test_retry_not_found(client):
    response = client.post("/retry/ORDER-missing")

    assert response.status_code == 404
    assert response.json()["error"] == "Original withdrawal not found"


def test_retry_not_retryable(client, store):
    add_receipt(store, status="processing")

    response = client.post("/retry/ORDER-100")

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "This withdrawal cannot be retried",
        "original_reference": "ORDER-100",
        "current_status": "processing",
    }


def test_retry_success(client, store, mock_gateway, initiated):
    add_receipt(store, status="cancelled")
    mock_gateway(initiated)

    response = client.post("/retry/ORDER-100")

    assert response.status_code == 200
    body = response.json()
    assert body["original_reference"] == "ORDER-100"
    assert body["reference"].startswith("RETRY-")
    assert body["receipt"]["is_retry"] is True
    assert body["receipt"]["original_reference"] == "ORDER-100"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
