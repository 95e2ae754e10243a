"""
Database models for the CareHub clinic backend.

The order/payment aggregate is the heart of this module: an
:class:`Order` exclusively owns its :class:`OrderDetail` line items and
its :class:`PaymentTransaction` rows.  Appointments, services and
patient treatments are collaborators that orders may point at.  The
:class:`ScheduledJob` table is the durable delayed-job queue used to
expire unpaid payments.
"""
from __future__ import annotations

from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.core.validators import MinValueValidator
from django.db import models

MONEY_MAX_DIGITS = 14
MONEY_DECIMAL_PLACES = 2


def money_field(**kwargs) -> models.DecimalField:
    kwargs.setdefault('max_digits', MONEY_MAX_DIGITS)
    kwargs.setdefault('decimal_places', MONEY_DECIMAL_PLACES)
    return models.DecimalField(**kwargs)


class User(AbstractUser):
    """Custom user model with a role.

    Patients own orders and appointments; staff and admins may operate
    on any order and see the payment dashboard.
    """
    ROLE_PATIENT = 'patient'
    ROLE_DOCTOR = 'doctor'
    ROLE_STAFF = 'staff'
    ROLE_ADMIN = 'admin'
    ROLE_CHOICES = [
        (ROLE_PATIENT, 'Patient'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_STAFF, 'Staff'),
        (ROLE_ADMIN, 'Administrator'),
    ]
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_PATIENT)
    phone_number = models.CharField(max_length=20, blank=True, null=True)

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Service(models.Model):
    """A bookable clinic service (consultation, test panel, ...)."""
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    price = money_field(default=Decimal('0'))
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.name


class Appointment(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_CONFIRMED = 'CONFIRMED'
    STATUS_PAID = 'PAID'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_PAID, 'Paid'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='appointments')
    doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='doctor_appointments'
    )
    service = models.ForeignKey(
        Service, null=True, blank=True, on_delete=models.SET_NULL, related_name='appointments'
    )
    appointment_time = models.DateTimeField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Appointment #{self.pk} u={self.user_id} {self.status}"


class PatientTreatment(models.Model):
    """A treatment course; ``status`` flips to True once it is paid for."""
    patient = models.ForeignKey(User, on_delete=models.CASCADE, related_name='treatments')
    doctor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='prescribed_treatments'
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(null=True, blank=True)
    status = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"Treatment #{self.pk} p={self.patient_id}"


class Order(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_PAID = 'PAID'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_EXPIRED = 'EXPIRED'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PAID, 'Paid'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_EXPIRED, 'Expired'),
    ]
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='orders')
    appointment = models.ForeignKey(
        Appointment, null=True, blank=True, on_delete=models.SET_NULL, related_name='orders'
    )
    patient_treatment = models.ForeignKey(
        PatientTreatment, null=True, blank=True, on_delete=models.SET_NULL, related_name='orders'
    )
    order_code = models.CharField(max_length=32, unique=True)
    total_amount = money_field()
    order_status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    notes = models.TextField(blank=True, null=True)
    expired_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['user', 'created_at'], name='clinic_orde_user_id_7c9a1e_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.order_code} ({self.order_status})"


class OrderDetail(models.Model):
    """A line item.  Immutable once the order is created."""
    TYPE_APPOINTMENT_FEE = 'APPOINTMENT_FEE'
    TYPE_MEDICINE = 'MEDICINE'
    TYPE_TEST = 'TEST'
    TYPE_CONSULTATION = 'CONSULTATION'
    TYPE_TREATMENT = 'TREATMENT'
    TYPE_CHOICES = [
        (TYPE_APPOINTMENT_FEE, 'Appointment fee'),
        (TYPE_MEDICINE, 'Medicine'),
        (TYPE_TEST, 'Test'),
        (TYPE_CONSULTATION, 'Consultation'),
        (TYPE_TREATMENT, 'Treatment'),
    ]
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='order_details')
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    reference_id = models.PositiveIntegerField(null=True, blank=True)
    name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = money_field(validators=[MinValueValidator(Decimal('0'))])
    total_price = money_field()
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} x{self.quantity}"


class PaymentTransaction(models.Model):
    """A payment attempt for an order.

    ``status`` only ever leaves PENDING; SUCCESS, CANCELLED and EXPIRED
    are terminal.  Every transition goes through a conditional update
    (``filter(status=PENDING).update(...)``) so concurrent writers cannot
    both succeed.
    """
    METHOD_CASH = 'CASH'
    METHOD_BANK_TRANSFER = 'BANK_TRANSFER'
    METHOD_E_WALLET = 'E_WALLET'
    METHOD_CHOICES = [
        (METHOD_CASH, 'Cash'),
        (METHOD_BANK_TRANSFER, 'Bank transfer'),
        (METHOD_E_WALLET, 'E-wallet'),
    ]

    STATUS_PENDING = 'PENDING'
    STATUS_SUCCESS = 'SUCCESS'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_EXPIRED = 'EXPIRED'
    STATUS_FAILED = 'FAILED'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_SUCCESS, 'Success'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_EXPIRED, 'Expired'),
        (STATUS_FAILED, 'Failed'),
    ]

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='payments')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='payments')
    amount = money_field()
    method = models.CharField(max_length=20, choices=METHOD_CHOICES, default=METHOD_CASH)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    transaction_code = models.CharField(max_length=15, unique=True)
    gateway_transaction_id = models.CharField(max_length=128, null=True, blank=True)
    gateway_response = models.JSONField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'created_at'], name='clinic_paym_status_3f1b2d_idx'),
            models.Index(fields=['user', 'created_at'], name='clinic_paym_user_id_a8e4c0_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.transaction_code} {self.amount} ({self.status})"


class ScheduledJob(models.Model):
    """Durable delayed job keyed by a deterministic ``job_id``."""
    STATUS_WAITING = 'waiting'
    STATUS_ACTIVE = 'active'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = [
        (STATUS_WAITING, 'Waiting'),
        (STATUS_ACTIVE, 'Active'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
    ]
    job_id = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=64)
    payload = models.JSONField(default=dict, blank=True)
    run_at = models.DateTimeField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_WAITING)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'run_at'], name='clinic_sche_status_5d0e7b_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.job_id} [{self.status}] @ {self.run_at:%F %T}"


class BankTransferReceipt(models.Model):
    """Raw bank notification as delivered to the transfer receiver."""
    gateway = models.CharField(max_length=64)
    transaction_date = models.DateTimeField()
    account_number = models.CharField(max_length=32)
    sub_account = models.CharField(max_length=64, blank=True, null=True)
    amount_in = money_field(default=Decimal('0'))
    amount_out = money_field(default=Decimal('0'))
    accumulated = money_field(default=Decimal('0'))
    code = models.CharField(max_length=64, blank=True, null=True)
    transaction_content = models.TextField(blank=True)
    reference_number = models.CharField(max_length=64, blank=True, null=True)
    body = models.TextField(blank=True)
    payment = models.ForeignKey(
        PaymentTransaction, null=True, blank=True, on_delete=models.SET_NULL, related_name='bank_receipts'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.gateway}:{self.reference_number or self.code} +{self.amount_in}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='clinic_audi_action_0b6f3a_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='clinic_audi_object__e2c4d9_idx'),
        ]
