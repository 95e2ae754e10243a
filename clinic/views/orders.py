from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import ensure_can_access
from clinic.serializers.orders import OrderCreateSerializer, OrderUpdateSerializer
from clinic.services import orders as order_service


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def order_create(request):
    s = OrderCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    ensure_can_access(request.user, s.validated_data['userId'])
    view = order_service.create_order(s.validated_data, actor=request.user)
    return Response({'ok': True, 'data': view.to_dict()}, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def order_detail(request, pk: int):
    view = order_service.get_order(pk)
    ensure_can_access(request.user, view.user.id)
    if request.method == 'GET':
        return Response({'ok': True, 'data': view.to_dict()})

    s = OrderUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    view = order_service.update_order(pk, s.validated_data, actor=request.user)
    return Response({'ok': True, 'data': view.to_dict()})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def orders_by_user(request, user_id: int):
    ensure_can_access(request.user, user_id)
    views = order_service.get_orders_by_user(user_id)
    return Response({'ok': True, 'data': [v.to_dict() for v in views]})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def order_by_code(request, order_code: str):
    view = order_service.get_order_by_code(order_code)
    ensure_can_access(request.user, view.user.id)
    return Response({'ok': True, 'data': view.to_dict()})
