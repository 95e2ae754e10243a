from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from clinic.exceptions import BadRequest, Conflict, NotFound
from clinic.models import Order, OrderDetail, PaymentTransaction
from clinic.services import order_store
from clinic.services.order_store import LineItemDraft, OrderDraft
from clinic.services.transfer_code import validate_transfer_content

pytestmark = pytest.mark.django_db


def _draft(user, items=None, **kw):
    return OrderDraft(
        user_id=user.id,
        items=items or [LineItemDraft(type="APPOINTMENT_FEE", name="Consultation", quantity=1, unit_price=Decimal("200000"))],
        method=kw.pop("method", "CASH"),
        **kw,
    )


def test_create_persists_order_items_and_pending_payment(patient, appointment, treatment):
    view = order_store.create_order_with_payment(
        _draft(patient, appointment_id=appointment.id, patient_treatment_id=treatment.id, notes="first visit")
    )
    assert view.order_status == "PENDING"
    assert view.order_code.startswith("DH")
    assert view.user.id == patient.id
    assert view.appointment.id == appointment.id
    assert view.appointment.service_name == "HIV consultation"
    assert view.patient_treatment.id == treatment.id
    assert len(view.order_details) == 1
    assert len(view.payments) == 1
    assert view.payment.status == "PENDING"
    assert view.payment.amount == view.total_amount

    assert Order.objects.count() == 1
    assert OrderDetail.objects.count() == 1
    assert PaymentTransaction.objects.get().transaction_code == view.payment.transaction_code


def test_total_is_exact_decimal_sum():
    items = [
        LineItemDraft(type="MEDICINE", name="ARV", quantity=3, unit_price=Decimal("0.10")),
        LineItemDraft(type="TEST", name="CD4", quantity=7, unit_price=Decimal("12345.67")),
        LineItemDraft(type="CONSULTATION", name="Visit", quantity=1, unit_price=Decimal("0.20")),
    ]
    draft = OrderDraft(user_id=1, items=items, method="CASH")
    assert draft.total_amount == Decimal("86420.19")


def test_created_total_and_line_prices_round_trip_exactly(patient):
    items = [
        LineItemDraft(type="MEDICINE", name="ARV", quantity=3, unit_price=Decimal("0.10")),
        LineItemDraft(type="TEST", name="CD4", quantity=7, unit_price=Decimal("12345.67")),
    ]
    view = order_store.create_order_with_payment(_draft(patient, items=items))
    assert view.total_amount == Decimal("86419.99")
    assert sum(d.total_price for d in view.order_details) == view.total_amount
    assert view.to_dict()["totalAmount"] == "86419.99"


def test_every_allocated_transaction_code_is_valid(patient):
    codes = {order_store.create_order_with_payment(_draft(patient)).payment.transaction_code for _ in range(20)}
    assert len(codes) == 20
    assert all(validate_transfer_content(c) for c in codes)


def test_empty_order_is_rejected(patient):
    with pytest.raises(BadRequest):
        order_store.create_order_with_payment(OrderDraft(user_id=patient.id, items=[], method="CASH"))


def test_code_collision_is_retried(patient, monkeypatch):
    first = order_store.create_order_with_payment(_draft(patient))
    codes = iter([first.order_code, "DH17000000000001234"])
    monkeypatch.setattr(order_store, "generate_order_code", lambda: next(codes))

    second = order_store.create_order_with_payment(_draft(patient))
    assert second.order_code == "DH17000000000001234"
    assert Order.objects.count() == 2


def test_code_collision_gives_up_with_conflict(patient, monkeypatch):
    first = order_store.create_order_with_payment(_draft(patient))
    monkeypatch.setattr(order_store, "generate_order_code", lambda: first.order_code)
    with pytest.raises(Conflict):
        order_store.create_order_with_payment(_draft(patient))
    assert Order.objects.count() == 1


def test_finders(patient, other_patient):
    a = order_store.create_order_with_payment(_draft(patient))
    b = order_store.create_order_with_payment(_draft(patient))
    order_store.create_order_with_payment(_draft(other_patient))

    assert order_store.find_by_id(a.id).order_code == a.order_code
    assert order_store.find_by_order_code(b.order_code).id == b.id
    assert [v.id for v in order_store.find_by_user_id(patient.id)] == [b.id, a.id]
    assert order_store.find_by_user_id(999999) == []

    with pytest.raises(NotFound):
        order_store.find_by_id(999999)
    with pytest.raises(NotFound):
        order_store.find_by_order_code("DH000")


def test_updates_return_hydrated_view(patient):
    view = order_store.create_order_with_payment(_draft(patient))
    deadline = timezone.now() + timedelta(hours=24)

    updated = order_store.update_expired_at(view.id, deadline)
    assert updated.expired_at == deadline
    assert updated.payment.expired_at == deadline

    assert order_store.update_status(view.id, "CANCELLED").order_status == "CANCELLED"
    assert order_store.update(view.id, notes="call first").notes == "call first"

    with pytest.raises(NotFound):
        order_store.update_status(999999, "PAID")
    with pytest.raises(NotFound):
        order_store.update_expired_at(999999, deadline)


def test_transition_is_conditional_on_prior_status(patient):
    view = order_store.create_order_with_payment(_draft(patient))
    pid = view.payment.id

    assert order_store.transition_payment(pid, "SUCCESS", order_status="PAID", paid_at=timezone.now())
    assert not order_store.transition_payment(pid, "EXPIRED", order_status="EXPIRED")

    payment = PaymentTransaction.objects.get(id=pid)
    assert payment.status == "SUCCESS"
    assert payment.order.order_status == "PAID"


def test_to_dict_shape(patient, appointment):
    view = order_store.create_order_with_payment(_draft(patient, appointment_id=appointment.id))
    data = view.to_dict()
    assert data["orderCode"] == view.order_code
    assert data["totalAmount"] == "200000.00"
    assert data["user"]["id"] == patient.id
    assert data["appointment"]["service"] == {"name": "HIV consultation"}
    assert data["patientTreatment"] is None
    assert data["orderDetails"][0]["unitPrice"] == "200000.00"
    assert data["payments"][0]["transactionCode"] == view.payment.transaction_code
    assert "paymentUrl" not in data
    assert "warnings" not in data
