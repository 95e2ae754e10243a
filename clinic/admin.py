"""
Django admin registrations for the clinic models.

Payments and scheduled jobs are exposed read-mostly so staff can inspect
the payment lifecycle from ``/admin/``; status changes still go through
the API so the conditional-update rules apply.
"""

from django.contrib import admin

from .models import (
    User,
    Service,
    Appointment,
    PatientTreatment,
    Order,
    OrderDetail,
    PaymentTransaction,
    ScheduledJob,
    BankTransferReceipt,
    AuditEvent,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'email', 'phone_number', 'is_staff', 'is_superuser')
    list_filter = ('role',)
    search_fields = ('username', 'email', 'phone_number')


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'price')
    search_fields = ('name',)


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'doctor', 'service', 'appointment_time', 'status')
    list_filter = ('status',)


@admin.register(PatientTreatment)
class PatientTreatmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'doctor', 'start_date', 'end_date', 'status')
    list_filter = ('status',)


class OrderDetailInline(admin.TabularInline):
    model = OrderDetail
    extra = 0


class PaymentInline(admin.TabularInline):
    model = PaymentTransaction
    extra = 0
    readonly_fields = ('status', 'transaction_code', 'amount', 'paid_at', 'expired_at')


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('order_code', 'user', 'total_amount', 'order_status', 'expired_at', 'created_at')
    list_filter = ('order_status',)
    search_fields = ('order_code', 'user__username')
    inlines = [OrderDetailInline, PaymentInline]


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ('transaction_code', 'order', 'user', 'amount', 'method', 'status', 'paid_at', 'expired_at')
    list_filter = ('status', 'method')
    search_fields = ('transaction_code', 'gateway_transaction_id', 'order__order_code')
    readonly_fields = ('status', 'gateway_response', 'paid_at')


@admin.register(ScheduledJob)
class ScheduledJobAdmin(admin.ModelAdmin):
    list_display = ('job_id', 'name', 'status', 'run_at', 'attempts', 'updated_at')
    list_filter = ('status', 'name')
    search_fields = ('job_id',)


@admin.register(BankTransferReceipt)
class BankTransferReceiptAdmin(admin.ModelAdmin):
    list_display = ('id', 'gateway', 'transaction_date', 'amount_in', 'code', 'reference_number', 'payment')
    search_fields = ('code', 'reference_number', 'transaction_content')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'action', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
