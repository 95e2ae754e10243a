from rest_framework import serializers

from clinic.models import PaymentTransaction


class WebhookSerializer(serializers.Serializer):
    transactionId = serializers.CharField(max_length=128, required=False, allow_blank=True)
    orderId = serializers.CharField(max_length=64)
    amount = serializers.IntegerField(required=False)
    status = serializers.CharField(max_length=32)
    message = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    signature = serializers.CharField(required=False, allow_blank=True)


class BankReceiverSerializer(serializers.Serializer):
    id = serializers.IntegerField(required=False)
    gateway = serializers.CharField(max_length=64)
    transactionDate = serializers.CharField(max_length=32)
    accountNumber = serializers.CharField(max_length=32)
    subAccount = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    transferType = serializers.ChoiceField(choices=['in', 'out'])
    transferAmount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)
    accumulated = serializers.DecimalField(max_digits=16, decimal_places=2, required=False, default=0)
    code = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    content = serializers.CharField(required=False, allow_blank=True, default='')
    referenceCode = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True, default='')


class DashboardQuerySerializer(serializers.Serializer):
    startDate = serializers.DateTimeField(required=False)
    endDate = serializers.DateTimeField(required=False)
    status = serializers.ChoiceField(choices=[c for c, _ in PaymentTransaction.STATUS_CHOICES], required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    limit = serializers.IntegerField(min_value=1, max_value=200, required=False)


class RevenueQuerySerializer(serializers.Serializer):
    period = serializers.ChoiceField(choices=['day', 'month', 'year'], required=False)
    startDate = serializers.DateTimeField(required=False)
    endDate = serializers.DateTimeField(required=False)
