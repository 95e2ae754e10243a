import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import transaction
from django.db.models import Count, Q, Sum
from django.db.models.functions import TruncDay, TruncMonth, TruncYear
from django.utils import timezone

from clinic.exceptions import BadRequest
from clinic.models import Appointment, Order, PatientTreatment, PaymentTransaction
from clinic.services import order_store, scheduler
from clinic.services.audit import log_payment_event
from clinic.services.order_store import PaymentView
from clinic.services.realtime import broadcast_payment_update

logger = logging.getLogger(__name__)

PERIODS = {'day': TruncDay, 'month': TruncMonth, 'year': TruncYear}


def payment_to_dict(payment: PaymentTransaction) -> Dict[str, Any]:
    data = PaymentView.from_model(payment).to_dict()
    order = payment.order
    data['order'] = {
        'id': order.id,
        'orderCode': order.order_code,
        'totalAmount': str(order.total_amount),
        'orderStatus': order.order_status,
    }
    return data


def get_payment(payment_id: int) -> PaymentTransaction:
    return order_store.get_payment(payment_id)


def get_payment_by_code(transaction_code: str) -> PaymentTransaction:
    return order_store.find_payment_by_code(transaction_code)


def list_user_payments(user_id: int) -> List[PaymentTransaction]:
    return list(
        PaymentTransaction.objects.select_related('order')
        .filter(user_id=user_id).order_by('-created_at', '-id')
    )


def confirm_payment(
    payment: PaymentTransaction,
    *,
    gateway_response: Optional[Dict[str, Any]] = None,
    gateway_transaction_id: Optional[str] = None,
    source: str = 'webhook',
) -> PaymentTransaction:
    """Mark a pending payment SUCCESS and settle everything hanging off it.

    The order becomes PAID, a linked appointment PAID and a linked
    treatment active.  A payment that is not PENDING (already confirmed,
    cancelled or expired, possibly by a concurrent writer) is rejected
    with ``BadRequest`` and nothing is changed.
    """
    if payment.status != PaymentTransaction.STATUS_PENDING:
        logger.info('Confirm via %s rejected: payment %s is %s', source, payment.id, payment.status)
        raise BadRequest(f'Payment {payment.transaction_code} is already {payment.status}')

    fields: Dict[str, Any] = {'paid_at': timezone.now(), 'gateway_response': gateway_response}
    if gateway_transaction_id:
        fields['gateway_transaction_id'] = gateway_transaction_id

    with transaction.atomic():
        if not order_store.transition_payment(
            payment.id, PaymentTransaction.STATUS_SUCCESS, order_status=Order.STATUS_PAID, **fields,
        ):
            logger.info('Confirm via %s lost the race for payment %s', source, payment.id)
            raise BadRequest(f'Payment {payment.transaction_code} is no longer pending')
        order = Order.objects.only('appointment_id', 'patient_treatment_id').get(id=payment.order_id)
        if order.appointment_id:
            Appointment.objects.filter(id=order.appointment_id).exclude(
                status=Appointment.STATUS_PAID,
            ).update(status=Appointment.STATUS_PAID)
        if order.patient_treatment_id:
            PatientTreatment.objects.filter(id=order.patient_treatment_id).update(status=True)

    scheduler.cancel_scheduled(payment.id)
    payment.refresh_from_db()
    log_payment_event('payment_success', payment, source=source)
    broadcast_payment_update(payment)
    logger.info('Payment %s (%s) confirmed via %s', payment.id, payment.transaction_code, source)
    return payment


def cancel_payment(payment_id: int, *, user=None) -> PaymentTransaction:
    payment = order_store.get_payment(payment_id)
    if payment.status != PaymentTransaction.STATUS_PENDING:
        raise BadRequest(f'Only pending payments can be cancelled (current: {payment.status})')
    if not order_store.transition_payment(
        payment.id, PaymentTransaction.STATUS_CANCELLED, order_status=Order.STATUS_CANCELLED,
    ):
        raise BadRequest('Payment is no longer pending')

    scheduler.cancel_scheduled(payment.id)
    payment.refresh_from_db()
    log_payment_event('payment_cancelled', payment, user=user)
    broadcast_payment_update(payment)
    logger.info('Payment %s (%s) cancelled by user %s', payment.id, payment.transaction_code, getattr(user, 'id', None))
    return payment


def _date_filtered(qs, start: Optional[datetime], end: Optional[datetime]):
    if start:
        qs = qs.filter(created_at__gte=start)
    if end:
        qs = qs.filter(created_at__lte=end)
    return qs


def dashboard(*, start: Optional[datetime] = None, end: Optional[datetime] = None,
              status: Optional[str] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    qs = _date_filtered(PaymentTransaction.objects.select_related('order'), start, end)
    summary_qs = qs
    if status:
        qs = qs.filter(status=status)

    total = qs.count()
    offset = (page - 1) * limit
    items = list(qs.order_by('-created_at', '-id')[offset:offset + limit])

    agg = summary_qs.aggregate(
        total_count=Count('id'),
        success_count=Count('id', filter=Q(status=PaymentTransaction.STATUS_SUCCESS)),
        pending_count=Count('id', filter=Q(status=PaymentTransaction.STATUS_PENDING)),
        revenue=Sum('amount', filter=Q(status=PaymentTransaction.STATUS_SUCCESS)),
    )
    return {
        'data': [payment_to_dict(p) for p in items],
        'pagination': {'total': total, 'page': page, 'limit': limit},
        'summary': {
            'totalPayments': agg['total_count'],
            'successPayments': agg['success_count'],
            'pendingPayments': agg['pending_count'],
            'totalRevenue': str(agg['revenue'] or Decimal('0.00')),
        },
    }


def revenue_stats(period: str = 'day', *, start: Optional[datetime] = None,
                  end: Optional[datetime] = None) -> List[Dict[str, Any]]:
    trunc = PERIODS.get(period)
    if trunc is None:
        raise BadRequest(f'period must be one of {", ".join(PERIODS)}')
    qs = _date_filtered(
        PaymentTransaction.objects.filter(status=PaymentTransaction.STATUS_SUCCESS), start, end,
    )
    rows = (
        qs.annotate(bucket=trunc('paid_at'))
        .values('bucket')
        .annotate(revenue=Sum('amount'), count=Count('id'))
        .order_by('bucket')
    )
    return [
        {
            'period': r['bucket'].date().isoformat() if r['bucket'] else None,
            'revenue': str(r['revenue']),
            'count': r['count'],
        }
        for r in rows
    ]
