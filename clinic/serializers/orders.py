import bleach
from rest_framework import serializers

from clinic.models import Order, OrderDetail, PaymentTransaction


def _clean_notes(v):
    if v is None:
        return None
    return bleach.clean(v.strip(), tags=[], strip=True)


class OrderItemSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=[c for c, _ in OrderDetail.TYPE_CHOICES])
    referenceId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    name = serializers.CharField(max_length=255)
    quantity = serializers.IntegerField(min_value=1)
    unitPrice = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)

    def validate_name(self, v):
        v = bleach.clean((v or '').strip(), tags=[], strip=True)
        if not v:
            raise serializers.ValidationError('Item name is required')
        return v


class OrderCreateSerializer(serializers.Serializer):
    userId = serializers.IntegerField(min_value=1)
    appointmentId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    patientTreatmentId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    items = OrderItemSerializer(many=True, allow_empty=False)
    method = serializers.ChoiceField(choices=[c for c, _ in PaymentTransaction.METHOD_CHOICES])
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, allow_null=True)

    def validate_notes(self, v):
        return _clean_notes(v)


class OrderUpdateSerializer(serializers.Serializer):
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, allow_null=True)
    orderStatus = serializers.ChoiceField(choices=[c for c, _ in Order.STATUS_CHOICES], required=False)

    def validate_notes(self, v):
        return _clean_notes(v)
