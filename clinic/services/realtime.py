import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def user_group(user_id: int) -> str:
    return f"user.{user_id}"


def broadcast_payment_update(payment) -> None:
    """Push the payment's new status to the owner's websocket group."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    event = {
        "type": "payment.update",
        "paymentId": payment.id,
        "orderId": payment.order_id,
        "transactionCode": payment.transaction_code,
        "status": payment.status,
        "paidAt": payment.paid_at.isoformat() if payment.paid_at else None,
    }
    try:
        async_to_sync(channel_layer.group_send)(user_group(payment.user_id), event)
    except Exception:
        # status change is committed; only the push is lost
        logger.exception("Broadcasting payment %s update failed", payment.id)
