"""
Inbound gateway notifications.

``handle_webhook`` processes the signed Sepay payment callback;
``handle_bank_receiver`` processes the bank's transfer notification,
which carries no signature and is authenticated by API key at the view.
Both confirm through :func:`clinic.services.payments.confirm_payment`,
so a redelivered notification fails with ``BadRequest`` instead of
settling the payment twice.
"""
import json
import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from django.utils import timezone

from clinic.exceptions import BadRequest, NotFound, Unauthorized
from clinic.models import BankTransferReceipt, PaymentTransaction
from clinic.services import order_store
from clinic.services.gateway import SepayClient, get_gateway_client
from clinic.services.payments import confirm_payment
from clinic.services.transfer_code import parse_transfer_content

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'SUCCESS'
STATUS_FAILED = 'FAILED'
STATUS_CANCELLED = 'CANCELLED'

TOKEN_RE = re.compile(r"[A-Za-z0-9]+")
RECEIVER_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _locate_payment(reference: str) -> PaymentTransaction:
    payment = PaymentTransaction.objects.filter(transaction_code=reference).first()
    if payment is None:
        payment = (
            PaymentTransaction.objects.filter(order__order_code=reference)
            .order_by('-created_at', '-id').first()
        )
    if payment is None:
        raise NotFound(f'Payment not found for reference {reference}')
    return payment


def handle_webhook(payload: Mapping[str, Any], signature: Optional[str],
                   client: Optional[SepayClient] = None) -> Dict[str, Any]:
    if not signature:
        raise BadRequest('Missing signature')
    client = client or get_gateway_client()
    if not client.verify_signature(payload, signature):
        logger.warning('Webhook rejected: bad signature for orderId=%s', payload.get('orderId'))
        raise Unauthorized('Invalid signature')

    status = str(payload.get('status') or '').upper()
    reference = str(payload.get('orderId') or '')
    logger.info('Webhook received: orderId=%s status=%s transactionId=%s',
                reference, status, payload.get('transactionId'))

    if status == STATUS_SUCCESS:
        payment = _locate_payment(reference)
        payment = confirm_payment(
            payment,
            gateway_response=dict(payload),
            gateway_transaction_id=payload.get('transactionId') or None,
            source='webhook',
        )
        return {'action': 'confirmed', 'paymentId': payment.id, 'status': payment.status}

    if status in (STATUS_FAILED, STATUS_CANCELLED):
        # no state change for gateway-reported failure/cancellation
        logger.info('Webhook %s for %s ignored: %s', status, reference, payload.get('message'))
        return {'action': 'ignored'}

    logger.warning('Webhook with unknown status %r for %s ignored', status, reference)
    return {'action': 'ignored'}


def _parse_amount(value: Any) -> Decimal:
    try:
        return Decimal(str(value if value is not None else '0'))
    except InvalidOperation:
        raise BadRequest(f'Invalid amount: {value}')


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return timezone.now()
    try:
        naive = datetime.strptime(value, RECEIVER_DATE_FORMAT)
    except ValueError:
        raise BadRequest(f'transactionDate must be {RECEIVER_DATE_FORMAT}')
    return timezone.make_aware(naive)


def resolve_transfer_code(code: Optional[str], content: Optional[str]) -> Optional[str]:
    """Find the payment reference in a bank notification.

    ``code`` wins when the bank already extracted it.  Otherwise each
    alphanumeric token of the free-text ``content`` that the codec accepts
    is a candidate, and the first one naming a known payment is used.
    """
    if code:
        return code.strip()
    candidates = []
    for token in TOKEN_RE.findall(content or ''):
        parsed = parse_transfer_content(token)
        if parsed.is_valid:
            candidates.append(parsed.prefix + parsed.suffix)
    if not candidates:
        return None
    known = set(
        PaymentTransaction.objects.filter(transaction_code__in=candidates).values_list('transaction_code', flat=True)
    )
    return next((c for c in candidates if c in known), candidates[0])


def handle_bank_receiver(data: Mapping[str, Any]) -> Dict[str, Any]:
    raw = json.loads(json.dumps(dict(data), default=str))
    is_incoming = data.get('transferType', 'in') == 'in'
    amount = _parse_amount(data.get('transferAmount'))
    receipt = BankTransferReceipt.objects.create(
        gateway=data.get('gateway') or '',
        transaction_date=_parse_date(data.get('transactionDate')),
        account_number=data.get('accountNumber') or '',
        sub_account=data.get('subAccount'),
        amount_in=amount if is_incoming else Decimal('0'),
        amount_out=Decimal('0') if is_incoming else amount,
        accumulated=_parse_amount(data.get('accumulated')),
        code=data.get('code'),
        transaction_content=data.get('content') or '',
        reference_number=data.get('referenceCode'),
        body=data.get('description') or json.dumps(raw),
    )
    logger.info('Bank transfer receipt %s stored: %s %s', receipt.id, data.get('gateway'), amount)

    if not is_incoming:
        return {'action': 'ignored', 'receiptId': receipt.id}

    transaction_code = resolve_transfer_code(data.get('code'), data.get('content'))
    if not transaction_code:
        raise BadRequest('No payment reference found in transfer content')

    payment = order_store.find_payment_by_code(transaction_code)
    BankTransferReceipt.objects.filter(id=receipt.id).update(payment=payment)
    if amount != payment.amount:
        logger.warning('Transfer for %s has amount %s, expected %s', transaction_code, amount, payment.amount)
        raise BadRequest(f'Transferred amount {amount} does not match payment amount {payment.amount}')

    payment = confirm_payment(
        payment,
        gateway_response=raw,
        gateway_transaction_id=str(data.get('id') or data.get('referenceCode') or '') or None,
        source='bank_transfer',
    )
    return {'action': 'confirmed', 'paymentId': payment.id, 'status': payment.status, 'receiptId': receipt.id}
