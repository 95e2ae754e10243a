import pytest
from django.conf import settings as django_settings
from rest_framework.test import APIClient
from rest_framework.throttling import AnonRateThrottle, UserRateThrottle

from clinic.models import Appointment, AuditEvent, BankTransferReceipt, PatientTreatment, PaymentTransaction, ScheduledJob
from clinic.services import orders as order_service
from clinic.services import scheduler
from clinic.services.gateway import GatewayConfig, SepayClient

pytestmark = pytest.mark.django_db

WEBHOOK_URL = "/api/payments/webhook"
RECEIVER_URL = "/api/payment/receiver"


def _sign(payload):
    config = GatewayConfig(api_key="", secret_key=django_settings.SEPAY_SECRET_KEY, base_url="https://gateway.test")
    return SepayClient(config).sign(payload)


def _post_webhook(payload, signature):
    client = APIClient()
    headers = {"HTTP_X_SEPAY_SIGNATURE": signature} if signature is not None else {}
    return client.post(WEBHOOK_URL, {**payload, "signature": signature or ""}, format="json", **headers)


@pytest.fixture
def bank_order(gateway_settings, order_data, appointment, treatment):
    view = order_service.create_order(
        order_data(method="BANK_TRANSFER", appointmentId=appointment.id, patientTreatmentId=treatment.id)
    )
    return view


def _success_payload(view, **over):
    return {
        "transactionId": "GW-0001",
        "orderId": view.payment.transaction_code,
        "amount": 200000,
        "status": "SUCCESS",
        "message": "Payment completed",
        **over,
    }


def test_success_webhook_confirms_payment(bank_order):
    payload = _success_payload(bank_order)
    r = _post_webhook(payload, _sign(payload))
    assert r.status_code == 200, r.data
    assert r.data["ok"] is True
    assert r.data["action"] == "confirmed"

    payment = PaymentTransaction.objects.get(id=bank_order.payment.id)
    assert payment.status == "SUCCESS"
    assert payment.paid_at is not None
    assert payment.gateway_transaction_id == "GW-0001"
    assert payment.gateway_response["orderId"] == payload["orderId"]
    assert payment.order.order_status == "PAID"
    assert Appointment.objects.get(id=bank_order.appointment.id).status == "PAID"
    assert PatientTreatment.objects.get(id=bank_order.patient_treatment.id).status is True
    assert not ScheduledJob.objects.filter(job_id=scheduler.job_id_for(payment.id)).exists()
    assert AuditEvent.objects.filter(action="payment_success", object_id=payment.id).count() == 1


def test_replayed_success_webhook_is_rejected(bank_order):
    payload = _success_payload(bank_order)
    sig = _sign(payload)
    assert _post_webhook(payload, sig).status_code == 200
    paid_at = PaymentTransaction.objects.get(id=bank_order.payment.id).paid_at

    r = _post_webhook(payload, sig)
    assert r.status_code == 400
    assert r.data["error"]["code"] == "bad_request"
    payment = PaymentTransaction.objects.get(id=bank_order.payment.id)
    assert payment.paid_at == paid_at
    assert AuditEvent.objects.filter(action="payment_success").count() == 1


def test_worker_firing_after_confirmation_is_a_no_op(bank_order):
    payload = _success_payload(bank_order)
    _post_webhook(payload, _sign(payload))
    assert scheduler.process_cancel_payment(bank_order.payment.id) == "skipped"
    assert PaymentTransaction.objects.get(id=bank_order.payment.id).status == "SUCCESS"


def test_already_paid_appointment_is_left_as_is(bank_order):
    Appointment.objects.filter(id=bank_order.appointment.id).update(status="PAID")
    payload = _success_payload(bank_order)
    assert _post_webhook(payload, _sign(payload)).status_code == 200
    assert Appointment.objects.get(id=bank_order.appointment.id).status == "PAID"


def test_webhook_by_order_code(bank_order):
    payload = _success_payload(bank_order, orderId=bank_order.order_code)
    assert _post_webhook(payload, _sign(payload)).status_code == 200
    assert PaymentTransaction.objects.get(id=bank_order.payment.id).status == "SUCCESS"


def test_missing_signature_is_bad_request(bank_order):
    r = _post_webhook(_success_payload(bank_order), None)
    assert r.status_code == 400
    assert PaymentTransaction.objects.get(id=bank_order.payment.id).status == "PENDING"


def test_wrong_signature_is_unauthorized(bank_order):
    payload = _success_payload(bank_order)
    forged = _sign({**payload, "amount": 1})
    r = _post_webhook(payload, forged)
    assert r.status_code == 401
    assert r.data["error"]["code"] == "unauthorized"
    assert PaymentTransaction.objects.get(id=bank_order.payment.id).status == "PENDING"


def test_missing_secret_rejects_every_signature(bank_order, settings):
    payload = _success_payload(bank_order)
    sig = _sign(payload)
    settings.SEPAY_SECRET_KEY = ""
    assert _post_webhook(payload, sig).status_code == 401


def test_unknown_reference_is_not_found(bank_order):
    payload = _success_payload(bank_order, orderId="DH99999999")
    assert _post_webhook(payload, _sign(payload)).status_code == 404


@pytest.mark.parametrize("gateway_status", ["FAILED", "CANCELLED", "REFUNDED"])
def test_non_success_statuses_are_ignored(bank_order, gateway_status):
    payload = _success_payload(bank_order, status=gateway_status)
    r = _post_webhook(payload, _sign(payload))
    assert r.status_code == 200
    assert r.data == {"ok": True, "action": "ignored"}
    assert PaymentTransaction.objects.get(id=bank_order.payment.id).status == "PENDING"


def _receiver_body(view, **over):
    return {
        "id": 92704,
        "gateway": "TPBank",
        "transactionDate": "2024-05-25 21:11:02",
        "accountNumber": "0123456789",
        "transferType": "in",
        "transferAmount": 200000,
        "accumulated": 1200000,
        "content": f"MBVCB.5678.{view.payment.transaction_code}.CT tu NGUYEN VAN A",
        "referenceCode": "FT24146",
        "description": "BankAPINotify",
        **over,
    }


def _post_receiver(body, key="receiver-key"):
    client = APIClient()
    return client.post(RECEIVER_URL, body, format="json", HTTP_AUTHORIZATION=f"Apikey {key}")


def test_bank_receiver_confirms_from_content(bank_order):
    r = _post_receiver(_receiver_body(bank_order))
    assert r.status_code == 200, r.data
    assert r.data["action"] == "confirmed"
    payment = PaymentTransaction.objects.get(id=bank_order.payment.id)
    assert payment.status == "SUCCESS"
    receipt = BankTransferReceipt.objects.get()
    assert receipt.payment_id == payment.id
    assert receipt.reference_number == "FT24146"


def test_bank_receiver_prefers_explicit_code(bank_order):
    body = _receiver_body(bank_order, code=bank_order.payment.transaction_code, content="no reference here")
    assert _post_receiver(body).status_code == 200


def test_bank_receiver_amount_mismatch(bank_order):
    r = _post_receiver(_receiver_body(bank_order, transferAmount=150000))
    assert r.status_code == 400
    assert PaymentTransaction.objects.get(id=bank_order.payment.id).status == "PENDING"
    assert BankTransferReceipt.objects.count() == 1


def test_bank_receiver_unknown_or_missing_reference(bank_order):
    assert _post_receiver(_receiver_body(bank_order, code="DH00000001")).status_code == 404
    assert _post_receiver(_receiver_body(bank_order, content="thanh toan")).status_code == 400


def test_bank_receiver_replay_is_rejected(bank_order):
    assert _post_receiver(_receiver_body(bank_order)).status_code == 200
    assert _post_receiver(_receiver_body(bank_order)).status_code == 400


def test_bank_receiver_requires_api_key(bank_order):
    assert _post_receiver(_receiver_body(bank_order), key="wrong").status_code == 401
    r = APIClient().post(RECEIVER_URL, _receiver_body(bank_order), format="json")
    assert r.status_code == 401
    assert BankTransferReceipt.objects.count() == 0


def test_gateway_redelivery_is_not_throttled(bank_order, monkeypatch):
    rates = {"anon": "1/min", "user": "1/min"}
    monkeypatch.setattr(AnonRateThrottle, "THROTTLE_RATES", rates)
    monkeypatch.setattr(UserRateThrottle, "THROTTLE_RATES", rates)

    payload = _success_payload(bank_order, orderId="DH99999999")
    for _ in range(3):
        assert _post_webhook(payload, _sign(payload)).status_code == 404
    for _ in range(3):
        assert _post_receiver(_receiver_body(bank_order, code="DH00000001")).status_code == 404
