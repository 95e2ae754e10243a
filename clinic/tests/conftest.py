from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.cache import cache
from django.utils import timezone

from clinic.models import Appointment, PatientTreatment, Service, User

SECRET = "test-sepay-secret"


@pytest.fixture(autouse=True)
def _fresh_cache():
    # throttle counters live in the cache
    cache.clear()
    yield


@pytest.fixture
def gateway_settings(settings):
    settings.SEPAY_SECRET_KEY = SECRET
    settings.SEPAY_API_KEY = "test-api-key"
    settings.SEPAY_BASE_URL = "https://gateway.test"
    settings.SEPAY_WEBHOOK_API_KEY = "receiver-key"
    return settings


@pytest.fixture
def patient(db):
    return User.objects.create_user(username="patient1", password="P@ssw0rd1", role="patient", email="p1@example.com")


@pytest.fixture
def other_patient(db):
    return User.objects.create_user(username="patient2", password="P@ssw0rd1", role="patient")


@pytest.fixture
def staff(db):
    return User.objects.create_user(username="staff1", password="P@ssw0rd1", role="staff")


@pytest.fixture
def appointment(patient):
    service = Service.objects.create(name="HIV consultation", price=Decimal("200000"))
    return Appointment.objects.create(user=patient, service=service, appointment_time=timezone.now() + timedelta(days=1))


@pytest.fixture
def treatment(patient):
    return PatientTreatment.objects.create(patient=patient, start_date=timezone.now())


@pytest.fixture
def order_data(patient):
    def build(method="BANK_TRANSFER", items=None, **extra):
        return {
            "userId": patient.id,
            "items": items or [
                {"type": "APPOINTMENT_FEE", "name": "Consultation fee", "quantity": 1, "unitPrice": Decimal("200000")},
            ],
            "method": method,
            **extra,
        }
    return build
