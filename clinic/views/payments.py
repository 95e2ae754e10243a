from rest_framework.decorators import api_view, authentication_classes, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import HasReceiverApiKey, IsStaffRole, ensure_can_access
from clinic.serializers.payments import (
    BankReceiverSerializer,
    DashboardQuerySerializer,
    RevenueQuerySerializer,
    WebhookSerializer,
)
from clinic.services import payments as payment_service
from clinic.services import scheduler
from clinic.services.webhook import handle_bank_receiver, handle_webhook

SIGNATURE_HEADER = 'HTTP_X_SEPAY_SIGNATURE'


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def payment_detail(request, pk: int):
    payment = payment_service.get_payment(pk)
    ensure_can_access(request.user, payment.user_id)
    return Response({'ok': True, 'data': payment_service.payment_to_dict(payment)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def payments_by_user(request, user_id: int):
    ensure_can_access(request.user, user_id)
    data = [payment_service.payment_to_dict(p) for p in payment_service.list_user_payments(user_id)]
    return Response({'ok': True, 'data': data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def payment_by_code(request, transaction_code: str):
    payment = payment_service.get_payment_by_code(transaction_code)
    ensure_can_access(request.user, payment.user_id)
    return Response({'ok': True, 'data': payment_service.payment_to_dict(payment)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def payment_cancel(request, pk: int):
    payment = payment_service.get_payment(pk)
    ensure_can_access(request.user, payment.user_id)
    payment = payment_service.cancel_payment(pk, user=request.user)
    return Response({'ok': True, 'data': payment_service.payment_to_dict(payment)})


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([])
def payment_webhook(request):
    """Sepay callback; the HMAC signature header is the only credential."""
    s = WebhookSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = handle_webhook(request.data, request.META.get(SIGNATURE_HEADER))
    return Response({'ok': True, **result})


@api_view(['POST'])
@authentication_classes([])
@permission_classes([HasReceiverApiKey])
@throttle_classes([])
def bank_receiver(request):
    s = BankReceiverSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = handle_bank_receiver(s.validated_data)
    return Response({'ok': True, **result})


@api_view(['GET'])
@permission_classes([IsStaffRole])
def payment_dashboard(request):
    q = DashboardQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    payload = payment_service.dashboard(
        start=q.validated_data.get('startDate'),
        end=q.validated_data.get('endDate'),
        status=q.validated_data.get('status'),
        page=q.validated_data.get('page', 1),
        limit=q.validated_data.get('limit', 20),
    )
    return Response({'ok': True, **payload})


@api_view(['GET'])
@permission_classes([IsStaffRole])
def revenue_stats(request):
    q = RevenueQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    period = q.validated_data.get('period', 'day')
    data = payment_service.revenue_stats(
        period, start=q.validated_data.get('startDate'), end=q.validated_data.get('endDate'),
    )
    return Response({'ok': True, 'period': period, 'data': data})


@api_view(['GET'])
@permission_classes([IsStaffRole])
def queue_status(request):
    return Response({'ok': True, 'data': scheduler.get_status()})


@api_view(['POST'])
@permission_classes([IsStaffRole])
def queue_clear(request):
    removed = scheduler.clear_all()
    return Response({'ok': True, 'removed': removed})
