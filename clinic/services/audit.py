from typing import Optional, Any, Dict
from django.contrib.auth import get_user_model
from clinic.models import AuditEvent

User = get_user_model()


def log_action(*, user: Optional[User], action: str, object_type: Optional[str]=None, object_id: Optional[int]=None, detail: Optional[Dict[str, Any]]=None) -> AuditEvent:
    return AuditEvent.objects.create(
        user_id=getattr(user, 'id', None) if user is not None else None,
        action=action,
        object_type=object_type, object_id=object_id,
        detail=detail or {},
    )


def log_payment_event(action: str, payment, *, user=None, **detail) -> AuditEvent:
    """Record a payment lifecycle event (created, success, cancelled, expired)."""
    return log_action(
        user=user,
        action=action,
        object_type='payment',
        object_id=payment.id,
        detail={'orderId': payment.order_id, 'transactionCode': payment.transaction_code, **detail},
    )
