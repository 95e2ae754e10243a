from datetime import timedelta
from decimal import Decimal

from django.utils import timezone
from rest_framework.test import APITestCase

from clinic.models import Order, PaymentTransaction, ScheduledJob, User
from clinic.services import orders as order_service
from clinic.services import payments as payment_service


class PaymentAPITests(APITestCase):
    def setUp(self) -> None:
        self.patient = User.objects.create_user(username="patient1", password="P@ssw0rd1", role="patient")
        self.other = User.objects.create_user(username="patient2", password="P@ssw0rd1", role="patient")
        self.staff = User.objects.create_user(username="staff1", password="P@ssw0rd1", role="staff")
        self.client.force_authenticate(user=self.patient)

    def _order(self, user=None, price="200000", method="BANK_TRANSFER"):
        user = user or self.patient
        return order_service.create_order({
            "userId": user.id,
            "items": [{"type": "TEST", "name": "Viral load", "quantity": 1, "unitPrice": Decimal(price)}],
            "method": method,
        })

    def test_cancel_pending_payment(self):
        view = self._order()
        r = self.client.post(f"/api/payments/{view.payment.id}/cancel")
        self.assertEqual(r.status_code, 200, r.data)
        self.assertEqual(r.data["data"]["status"], "CANCELLED")
        self.assertEqual(r.data["data"]["order"]["orderStatus"], "CANCELLED")
        self.assertEqual(ScheduledJob.objects.count(), 0)

    def test_cancel_twice_is_bad_request(self):
        view = self._order()
        self.client.post(f"/api/payments/{view.payment.id}/cancel")
        r = self.client.post(f"/api/payments/{view.payment.id}/cancel")
        self.assertEqual(r.status_code, 400)
        self.assertEqual(PaymentTransaction.objects.get(id=view.payment.id).status, "CANCELLED")

    def test_cancel_confirmed_payment_is_bad_request(self):
        view = self._order()
        payment_service.confirm_payment(PaymentTransaction.objects.get(id=view.payment.id))
        r = self.client.post(f"/api/payments/{view.payment.id}/cancel")
        self.assertEqual(r.status_code, 400)
        self.assertEqual(PaymentTransaction.objects.get(id=view.payment.id).status, "SUCCESS")
        self.assertEqual(Order.objects.get(id=view.id).order_status, "PAID")

    def test_cancel_missing_and_foreign(self):
        self.assertEqual(self.client.post("/api/payments/999999/cancel").status_code, 404)
        view = self._order(user=self.other)
        self.assertEqual(self.client.post(f"/api/payments/{view.payment.id}/cancel").status_code, 403)

    def test_read_endpoints(self):
        first = self._order()
        second = self._order(price="50000.50")

        r = self.client.get(f"/api/payments/{first.payment.id}")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data["data"]["transactionCode"], first.payment.transaction_code)
        self.assertEqual(r.data["data"]["order"]["orderCode"], first.order_code)

        r = self.client.get(f"/api/payments/user/{self.patient.id}")
        self.assertEqual([p["id"] for p in r.data["data"]], [second.payment.id, first.payment.id])
        self.assertEqual(r.data["data"][0]["amount"], "50000.50")

        r = self.client.get(f"/api/payments/code/{second.payment.transaction_code}")
        self.assertEqual(r.data["data"]["id"], second.payment.id)

        self.assertEqual(self.client.get("/api/payments/999999").status_code, 404)
        self.assertEqual(self.client.get("/api/payments/code/DH00000000").status_code, 404)
        self.assertEqual(self.client.get(f"/api/payments/user/{self.other.id}").status_code, 403)

    def test_admin_endpoints_require_staff(self):
        for url in ("/api/payment/dashboard", "/api/payment/revenue-stats", "/api/payments/queue/status"):
            self.assertEqual(self.client.get(url).status_code, 403, url)
        self.assertEqual(self.client.post("/api/payments/queue/clear").status_code, 403)

    def test_dashboard(self):
        paid = self._order(price="200000")
        self._order(price="100000")
        payment_service.confirm_payment(PaymentTransaction.objects.get(id=paid.payment.id))

        self.client.force_authenticate(user=self.staff)
        r = self.client.get("/api/payment/dashboard", {"limit": 1})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(len(r.data["data"]), 1)
        self.assertEqual(r.data["pagination"]["total"], 2)
        self.assertEqual(r.data["summary"]["totalPayments"], 2)
        self.assertEqual(r.data["summary"]["successPayments"], 1)
        self.assertEqual(r.data["summary"]["pendingPayments"], 1)
        self.assertEqual(Decimal(r.data["summary"]["totalRevenue"]), Decimal("200000"))

        r = self.client.get("/api/payment/dashboard", {"status": "SUCCESS"})
        self.assertEqual([p["id"] for p in r.data["data"]], [paid.payment.id])

    def test_revenue_stats(self):
        a = self._order(price="200000.10")
        b = self._order(price="0.20")
        self._order(price="999")
        for view in (a, b):
            payment_service.confirm_payment(PaymentTransaction.objects.get(id=view.payment.id))

        self.client.force_authenticate(user=self.staff)
        r = self.client.get("/api/payment/revenue-stats", {"period": "month"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data["period"], "month")
        self.assertEqual(len(r.data["data"]), 1)
        self.assertEqual(Decimal(r.data["data"][0]["revenue"]), Decimal("200000.30"))
        self.assertEqual(r.data["data"][0]["count"], 2)

        self.assertEqual(self.client.get("/api/payment/revenue-stats", {"period": "week"}).status_code, 400)

    def test_queue_status_and_clear(self):
        self._order()
        self._order()
        self.client.force_authenticate(user=self.staff)
        r = self.client.get("/api/payments/queue/status")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data["data"]["waiting"], 2)

        r = self.client.post("/api/payments/queue/clear")
        self.assertEqual(r.data["removed"], 2)
        self.assertEqual(ScheduledJob.objects.count(), 0)

    def test_healthz(self):
        self._order()
        r = self.client.get("/healthz")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["paymentJobs"]["waiting"], 1)

    def test_expired_payment_cannot_be_cancelled(self):
        view = self._order()
        PaymentTransaction.objects.filter(id=view.payment.id).update(expired_at=timezone.now() - timedelta(minutes=1))
        from clinic.services import scheduler
        scheduler.process_cancel_payment(view.payment.id)
        r = self.client.post(f"/api/payments/{view.payment.id}/cancel")
        self.assertEqual(r.status_code, 400)
        self.assertEqual(Order.objects.get(id=view.id).order_status, "EXPIRED")
