"""
Persistence for the order aggregate (order, line items, payments).

Every read returns an :class:`OrderView`, a typed projection of the
order with its user, appointment/service and treatment summaries, line
items and payments.  Money stays ``Decimal`` end to end and is rendered
as a string in :meth:`OrderView.to_dict`.

Payment status changes go through :func:`transition_payment`, which is a
conditional single-row update: it only succeeds while the row still has
the expected prior status.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import Prefetch
from django.utils import timezone

from clinic.exceptions import BadRequest, Conflict, InvalidTransferFormat, NotFound
from clinic.models import Order, OrderDetail, PaymentTransaction
from clinic.services.transfer_code import generate_transfer_content, validate_transfer_content

logger = logging.getLogger(__name__)

ORDER_CODE_PREFIX = 'DH'
MAX_CODE_ATTEMPTS = 5


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UserSummary:
    id: int
    name: str
    email: str
    phone_number: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'email': self.email, 'phoneNumber': self.phone_number}


@dataclass(frozen=True)
class AppointmentSummary:
    id: int
    appointment_time: datetime
    status: str
    service_name: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'appointmentTime': _iso(self.appointment_time),
            'status': self.status,
            'service': {'name': self.service_name} if self.service_name is not None else None,
        }


@dataclass(frozen=True)
class TreatmentSummary:
    id: int
    start_date: datetime
    end_date: Optional[datetime]
    status: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'startDate': _iso(self.start_date),
            'endDate': _iso(self.end_date),
            'status': self.status,
        }


@dataclass(frozen=True)
class LineItemView:
    id: int
    type: str
    reference_id: Optional[int]
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'referenceId': self.reference_id,
            'name': self.name,
            'quantity': self.quantity,
            'unitPrice': _money(self.unit_price),
            'totalPrice': _money(self.total_price),
        }


@dataclass(frozen=True)
class PaymentView:
    id: int
    order_id: int
    user_id: int
    amount: Decimal
    method: str
    status: str
    transaction_code: str
    gateway_transaction_id: Optional[str]
    paid_at: Optional[datetime]
    expired_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, p: PaymentTransaction) -> 'PaymentView':
        return cls(
            id=p.id, order_id=p.order_id, user_id=p.user_id, amount=p.amount, method=p.method,
            status=p.status, transaction_code=p.transaction_code,
            gateway_transaction_id=p.gateway_transaction_id, paid_at=p.paid_at,
            expired_at=p.expired_at, created_at=p.created_at, updated_at=p.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'orderId': self.order_id,
            'userId': self.user_id,
            'amount': _money(self.amount),
            'method': self.method,
            'status': self.status,
            'transactionCode': self.transaction_code,
            'gatewayTransactionId': self.gateway_transaction_id,
            'paidAt': _iso(self.paid_at),
            'expiredAt': _iso(self.expired_at),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


@dataclass(frozen=True)
class BankInfo:
    account_number: str
    account_name: str
    bank_name: str
    amount: Decimal
    content: str
    payment_id: int
    transaction_code: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accountNumber': self.account_number,
            'accountName': self.account_name,
            'bankName': self.bank_name,
            'amount': _money(self.amount),
            'content': self.content,
            'paymentId': self.payment_id,
            'transactionCode': self.transaction_code,
        }


@dataclass
class OrderView:
    id: int
    order_code: str
    total_amount: Decimal
    order_status: str
    notes: Optional[str]
    expired_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    user: UserSummary
    appointment: Optional[AppointmentSummary]
    patient_treatment: Optional[TreatmentSummary]
    order_details: List[LineItemView]
    payments: List[PaymentView]
    payment_url: Optional[str] = None
    bank_info: Optional[BankInfo] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def payment(self) -> PaymentView:
        return self.payments[0]

    @classmethod
    def from_model(cls, order: Order) -> 'OrderView':
        user = order.user
        appointment = order.appointment
        treatment = order.patient_treatment
        return cls(
            id=order.id,
            order_code=order.order_code,
            total_amount=order.total_amount,
            order_status=order.order_status,
            notes=order.notes,
            expired_at=order.expired_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
            user=UserSummary(id=user.id, name=user.display_name, email=user.email, phone_number=user.phone_number),
            appointment=AppointmentSummary(
                id=appointment.id,
                appointment_time=appointment.appointment_time,
                status=appointment.status,
                service_name=appointment.service.name if appointment.service_id else None,
            ) if appointment else None,
            patient_treatment=TreatmentSummary(
                id=treatment.id, start_date=treatment.start_date, end_date=treatment.end_date, status=treatment.status,
            ) if treatment else None,
            order_details=[
                LineItemView(
                    id=d.id, type=d.type, reference_id=d.reference_id, name=d.name,
                    quantity=d.quantity, unit_price=d.unit_price, total_price=d.total_price,
                )
                for d in order.order_details.all()
            ],
            payments=[PaymentView.from_model(p) for p in order.payments.all()],
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'orderCode': self.order_code,
            'totalAmount': _money(self.total_amount),
            'orderStatus': self.order_status,
            'notes': self.notes,
            'expiredAt': _iso(self.expired_at),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
            'user': self.user.to_dict(),
            'appointment': self.appointment.to_dict() if self.appointment else None,
            'patientTreatment': self.patient_treatment.to_dict() if self.patient_treatment else None,
            'orderDetails': [d.to_dict() for d in self.order_details],
            'payments': [p.to_dict() for p in self.payments],
        }
        if self.payment_url is not None:
            data['paymentUrl'] = self.payment_url
        if self.bank_info is not None:
            data['bankInfo'] = self.bank_info.to_dict()
        if self.warnings:
            data['warnings'] = list(self.warnings)
        return data


# ---------------------------------------------------------------------------
# Drafts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LineItemDraft:
    type: str
    name: str
    quantity: int
    unit_price: Decimal
    reference_id: Optional[int] = None

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class OrderDraft:
    user_id: int
    items: List[LineItemDraft]
    method: str
    appointment_id: Optional[int] = None
    patient_treatment_id: Optional[int] = None
    notes: Optional[str] = None
    expired_at: Optional[datetime] = None

    @property
    def total_amount(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal('0'))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _hydrated():
    return (
        Order.objects
        .select_related('user', 'appointment__service', 'patient_treatment')
        .prefetch_related(
            Prefetch('order_details', queryset=OrderDetail.objects.order_by('id')),
            Prefetch('payments', queryset=PaymentTransaction.objects.order_by('id')),
        )
    )


def generate_order_code() -> str:
    ts = int(timezone.now().timestamp() * 1000)
    return f'{ORDER_CODE_PREFIX}{ts}{secrets.randbelow(10_000):04d}'


def allocate_transaction_code(order_code: str, user_id: int) -> str:
    content = generate_transfer_content(order_code, user_id)
    if not validate_transfer_content(content.full_content):
        raise InvalidTransferFormat(f'Order code {order_code} does not yield a numeric transfer reference')
    return content.full_content


def create_order_with_payment(draft: OrderDraft) -> OrderView:
    if not draft.items:
        raise BadRequest('An order needs at least one item')
    total = draft.total_amount

    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        order_code = generate_order_code()
        transaction_code = allocate_transaction_code(order_code, draft.user_id)
        try:
            with transaction.atomic():
                order = Order.objects.create(
                    user_id=draft.user_id,
                    appointment_id=draft.appointment_id,
                    patient_treatment_id=draft.patient_treatment_id,
                    order_code=order_code,
                    total_amount=total,
                    order_status=Order.STATUS_PENDING,
                    notes=draft.notes,
                )
                OrderDetail.objects.bulk_create([
                    OrderDetail(
                        order=order,
                        type=item.type,
                        reference_id=item.reference_id,
                        name=item.name,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        total_price=item.total_price,
                    )
                    for item in draft.items
                ])
                payment = PaymentTransaction.objects.create(
                    order=order,
                    user_id=draft.user_id,
                    amount=total,
                    method=draft.method,
                    status=PaymentTransaction.STATUS_PENDING,
                    transaction_code=transaction_code,
                    expired_at=draft.expired_at,
                )
        except IntegrityError:
            logger.warning('Order/transaction code collision on attempt %s (%s/%s)', attempt, order_code, transaction_code)
            continue
        logger.info(
            'Order created: id=%s code=%s total=%s items=%s payment=%s tx=%s',
            order.id, order_code, total, len(draft.items), payment.id, transaction_code,
        )
        return find_by_id(order.id)

    raise Conflict('Could not allocate a unique order reference')


def find_by_id(order_id: int) -> OrderView:
    order = _hydrated().filter(id=order_id).first()
    if order is None:
        raise NotFound(f'Order with ID {order_id} not found')
    return OrderView.from_model(order)


def find_by_order_code(order_code: str) -> OrderView:
    order = _hydrated().filter(order_code=order_code).first()
    if order is None:
        raise NotFound(f'Order with code {order_code} not found')
    return OrderView.from_model(order)


def find_by_user_id(user_id: int) -> List[OrderView]:
    qs = _hydrated().filter(user_id=user_id).order_by('-created_at', '-id')
    return [OrderView.from_model(o) for o in qs]


def _update_fields(order_id: int, **fields) -> OrderView:
    fields['updated_at'] = timezone.now()
    if not Order.objects.filter(id=order_id).update(**fields):
        raise NotFound(f'Order with ID {order_id} not found')
    return find_by_id(order_id)


def update_status(order_id: int, order_status: str) -> OrderView:
    return _update_fields(order_id, order_status=order_status)


def update_expired_at(order_id: int, expired_at: datetime) -> OrderView:
    """Set the deadline on the order and on its still-pending payments."""
    with transaction.atomic():
        if not Order.objects.filter(id=order_id).update(expired_at=expired_at, updated_at=timezone.now()):
            raise NotFound(f'Order with ID {order_id} not found')
        PaymentTransaction.objects.filter(
            order_id=order_id, status=PaymentTransaction.STATUS_PENDING,
        ).update(expired_at=expired_at, updated_at=timezone.now())
    return find_by_id(order_id)


def update(order_id: int, **changes) -> OrderView:
    allowed = {k: v for k, v in changes.items() if k in ('notes', 'order_status')}
    if not allowed:
        return find_by_id(order_id)
    return _update_fields(order_id, **allowed)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

def get_payment(payment_id: int) -> PaymentTransaction:
    payment = PaymentTransaction.objects.select_related('order').filter(id=payment_id).first()
    if payment is None:
        raise NotFound('Payment not found')
    return payment


def find_payment_by_code(transaction_code: str) -> PaymentTransaction:
    payment = PaymentTransaction.objects.select_related('order').filter(transaction_code=transaction_code).first()
    if payment is None:
        raise NotFound(f'Payment not found with transactionCode {transaction_code}')
    return payment


def transition_payment(
    payment_id: int,
    to_status: str,
    *,
    order_status: Optional[str] = None,
    from_status: str = PaymentTransaction.STATUS_PENDING,
    **fields,
) -> bool:
    """Move a payment from ``from_status`` to ``to_status``.

    Returns False, without touching anything, when the payment is no
    longer in ``from_status``.  When ``order_status`` is given the owning
    order is updated in the same transaction.
    """
    now = timezone.now()
    with transaction.atomic():
        changed = PaymentTransaction.objects.filter(id=payment_id, status=from_status).update(
            status=to_status, updated_at=now, **fields,
        )
        if not changed:
            return False
        if order_status is not None:
            Order.objects.filter(payments__id=payment_id).update(order_status=order_status, updated_at=now)
    logger.info('Payment %s: %s -> %s', payment_id, from_status, to_status)
    return True
