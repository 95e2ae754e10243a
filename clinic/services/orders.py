"""
Order creation and the order-level reads/updates exposed over HTTP.

Creation validates the references, hands the atomic write to
:mod:`clinic.services.order_store`, stamps the payment deadline, arms the
expiry job and, for non-cash orders, attaches bank-transfer instructions.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.utils import timezone

from clinic.exceptions import BadRequest, Forbidden, NotFound
from clinic.models import Appointment, Order, PatientTreatment, PaymentTransaction
from clinic.services import order_store, scheduler
from clinic.services.audit import log_action, log_payment_event
from clinic.services.order_store import BankInfo, LineItemDraft, OrderDraft, OrderView

logger = logging.getLogger(__name__)

User = get_user_model()

WARN_NOT_SCHEDULED = 'expiration_not_scheduled'
WARN_NO_INSTRUCTIONS = 'payment_instructions_unavailable'


def _qr_amount(amount: Decimal) -> str:
    if amount == amount.to_integral_value():
        return str(int(amount))
    return format(amount.normalize(), 'f')


def build_payment_url(amount: Decimal, transaction_code: str) -> str:
    query = urlencode(
        {
            'acc': settings.BANK_ACCOUNT_NUMBER,
            'bank': settings.BANK_NAME,
            'amount': _qr_amount(amount),
            'des': transaction_code,
        },
        quote_via=quote,
    )
    return f'{settings.SEPAY_QR_BASE_URL}?{query}'


def build_bank_info(view: OrderView) -> BankInfo:
    payment = view.payment
    return BankInfo(
        account_number=settings.BANK_ACCOUNT_NUMBER,
        account_name=settings.BANK_ACCOUNT_NAME,
        bank_name=settings.BANK_NAME,
        amount=payment.amount,
        content=payment.transaction_code,
        payment_id=payment.id,
        transaction_code=payment.transaction_code,
    )


def _is_non_cash(view: OrderView) -> bool:
    return bool(view.payments) and view.payment.method != PaymentTransaction.METHOD_CASH


def _with_payment_url(view: OrderView) -> OrderView:
    if _is_non_cash(view):
        view.payment_url = build_payment_url(view.payment.amount, view.payment.transaction_code)
    return view


def _check_references(user_id: int, appointment_id: Optional[int], treatment_id: Optional[int]) -> None:
    if not User.objects.filter(id=user_id).exists():
        raise NotFound(f'User with ID {user_id} not found')
    if appointment_id is not None:
        appointment = Appointment.objects.filter(id=appointment_id).only('user_id').first()
        if appointment is None:
            raise NotFound(f'Appointment with ID {appointment_id} not found')
        if appointment.user_id != user_id:
            raise Forbidden('Appointment does not belong to this user')
    if treatment_id is not None:
        treatment = PatientTreatment.objects.filter(id=treatment_id).only('patient_id').first()
        if treatment is None:
            raise NotFound(f'Patient treatment with ID {treatment_id} not found')
        if treatment.patient_id != user_id:
            raise Forbidden('Patient treatment does not belong to this user')


def create_order(data: Dict[str, Any], *, actor=None) -> OrderView:
    """Create an order with its pending payment.

    ``data`` is the validated payload of ``OrderCreateSerializer``.
    """
    user_id = data['userId']
    appointment_id = data.get('appointmentId')
    treatment_id = data.get('patientTreatmentId')
    _check_references(user_id, appointment_id, treatment_id)

    delay = scheduler.expiry_delay()
    expired_at = timezone.now() + delay
    draft = OrderDraft(
        user_id=user_id,
        items=[
            LineItemDraft(
                type=item['type'],
                name=item['name'],
                quantity=item['quantity'],
                unit_price=item['unitPrice'],
                reference_id=item.get('referenceId'),
            )
            for item in data['items']
        ],
        method=data['method'],
        appointment_id=appointment_id,
        patient_treatment_id=treatment_id,
        notes=data.get('notes'),
        expired_at=expired_at,
    )
    view = order_store.create_order_with_payment(draft)
    view = order_store.update_expired_at(view.id, expired_at)
    payment = view.payment

    log_action(
        user=actor, action='order_created', object_type='order', object_id=view.id,
        detail={'orderCode': view.order_code, 'totalAmount': str(view.total_amount), 'method': payment.method},
    )
    log_payment_event('payment_created', payment, user=actor)

    warnings: List[str] = []
    try:
        scheduler.schedule_cancellation(payment.id, delay)
    except DatabaseError:
        logger.exception(
            'Order %s created but expiry of payment %s was not scheduled; the worker sweep must re-arm it',
            view.order_code, payment.id,
        )
        warnings.append(WARN_NOT_SCHEDULED)

    if _is_non_cash(view):
        try:
            view.bank_info = build_bank_info(view)
            view.payment_url = build_payment_url(payment.amount, payment.transaction_code)
        except (AttributeError, TypeError, ValueError):
            logger.exception('Could not build transfer instructions for order %s', view.order_code)
            warnings.append(WARN_NO_INSTRUCTIONS)

    view.warnings = warnings
    return view


def get_order(order_id: int) -> OrderView:
    return _with_payment_url(order_store.find_by_id(order_id))


def get_orders_by_user(user_id: int) -> List[OrderView]:
    return [_with_payment_url(v) for v in order_store.find_by_user_id(user_id)]


def get_order_by_code(order_code: str) -> OrderView:
    return order_store.find_by_order_code(order_code)


def update_order(order_id: int, changes: Dict[str, Any], *, actor=None) -> OrderView:
    current = order_store.find_by_id(order_id)
    if current.order_status == Order.STATUS_PAID:
        raise BadRequest('Cannot update a paid order')
    fields = {}
    if 'notes' in changes:
        fields['notes'] = changes['notes']
    if 'orderStatus' in changes:
        fields['order_status'] = changes['orderStatus']
    view = order_store.update(order_id, **fields)
    if fields:
        log_action(user=actor, action='order_updated', object_type='order', object_id=order_id,
                   detail={k: v for k, v in changes.items() if k in ('notes', 'orderStatus')})
    return view
