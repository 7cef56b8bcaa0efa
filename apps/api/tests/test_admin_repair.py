"""Admin repair tool and order search tests."""

from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from recolor.adapters.gateway import MockPaymentGateway
from recolor.core.config import Settings
from recolor.domain.payment_states import GatewayOrderState
from recolor.main import create_app
from recolor.services.reconciliation import ReconciliationService

_ADMIN_KEY = "test-admin-key"


class _AdminCase(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = MockPaymentGateway()
        self.app = create_app(
            Settings(auth_provider="mock", payment_gateway="mock", admin_repair_key=_ADMIN_KEY),
            gateway=self.gateway,
        )
        self.client = TestClient(self.app)
        self.store = self.app.state.store

    def _paid_order(self, *, job_id: str | None, order_id: str | None = None):
        order = self.store.create_order(amount=4900, currency="INR", job_id=job_id, order_id=order_id)
        self.store.settle_order_success(order_id=order.id, payment_id=f"pay-{order.id}")
        return order

    def _fix(self, body: dict | None = None, *, headers: dict | None = None):
        return self.client.post("/api/v1/admin/fix-payment", json=body, headers=headers)


class FixPaymentTests(_AdminCase):
    def test_single_order_repair_marks_job_paid(self) -> None:
        self.store.create_job(original_url="https://cdn.example/j1.jpg", job_id="j1")
        self._paid_order(job_id="j1", order_id="o1")

        response = self._fix({"orderId": "o1", "adminKey": _ADMIN_KEY})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["fixedCount"], 1)
        self.assertEqual(payload["fixedOrders"], ["o1"])
        self.assertEqual(payload["errors"], [])
        self.assertTrue(self.store.jobs["j1"].is_paid)

    def test_single_order_failure_reasons_are_reported(self) -> None:
        paid_job = self.store.create_job(original_url="https://cdn.example/paid.jpg")
        self.store.mark_job_paid(paid_job.id)
        self.store.create_order(amount=4900, currency="INR", job_id=paid_job.id, order_id="o-pending")
        self._paid_order(job_id=None, order_id="o-unlinked")
        self._paid_order(job_id="job-gone", order_id="o-dangling")
        self._paid_order(job_id=paid_job.id, order_id="o-done")

        cases = {
            "o-missing": "ORDER_NOT_FOUND",
            "o-pending": "ORDER_NOT_PAID",
            "o-unlinked": "NO_JOB_ID",
            "o-dangling": "JOB_NOT_FOUND",
            "o-done": "ALREADY_PAID",
        }
        for order_id, reason in cases.items():
            with self.subTest(order_id=order_id):
                response = self._fix({"orderId": order_id, "adminKey": _ADMIN_KEY})
                self.assertEqual(response.status_code, 200)
                payload = response.json()
                self.assertTrue(payload["success"])
                self.assertEqual(payload["fixedCount"], 0)
                self.assertEqual(payload["errors"][0]["orderId"], order_id)
                self.assertEqual(payload["errors"][0]["reason"], reason)

    def test_store_failure_is_reported_as_internal_error(self) -> None:
        job = self.store.create_job(original_url="https://cdn.example/a.jpg")
        order = self._paid_order(job_id=job.id)
        self.store.job_write_failure_message = "jobs table locked"

        response = self._fix({"orderId": order.id, "adminKey": _ADMIN_KEY})

        error = response.json()["errors"][0]
        self.assertEqual(error["reason"], "INTERNAL_ERROR")
        self.assertEqual(error["error"], "jobs table locked")
        self.assertFalse(self.store.jobs[job.id].is_paid)

    def test_batch_repair_collects_failures_without_aborting(self) -> None:
        first = self.store.create_job(original_url="https://cdn.example/1.jpg")
        second = self.store.create_job(original_url="https://cdn.example/2.jpg")
        self._paid_order(job_id=first.id)
        broken = self._paid_order(job_id="job-deleted")
        self._paid_order(job_id=second.id)

        response = self._fix({"adminKey": _ADMIN_KEY})

        payload = response.json()
        self.assertEqual(payload["fixedCount"], 2)
        self.assertEqual(len(payload["errors"]), 1)
        self.assertEqual(payload["errors"][0]["orderId"], broken.id)
        self.assertEqual(payload["errors"][0]["reason"], "JOB_NOT_FOUND")
        self.assertTrue(self.store.jobs[first.id].is_paid)
        self.assertTrue(self.store.jobs[second.id].is_paid)

    def test_batch_repair_skips_unlinked_and_already_paid(self) -> None:
        done = self.store.create_job(original_url="https://cdn.example/done.jpg")
        self.store.mark_job_paid(done.id)
        self._paid_order(job_id=done.id)
        self._paid_order(job_id=None)

        payload = self._fix({"adminKey": _ADMIN_KEY}).json()

        self.assertEqual(payload["fixedCount"], 0)
        self.assertEqual(payload["errors"], [])

    def test_repair_sweep_propagates_paid_after_failed_job_write(self) -> None:
        job = self.store.create_job(original_url="https://cdn.example/a.jpg")
        order = self.store.create_order(amount=4900, currency="INR", job_id=job.id)
        self.store.attach_gateway_order(order_id=order.id, gateway_order_id="OMO1")
        self.gateway.set_state(order.id, GatewayOrderState.COMPLETED, transaction_id="T1")
        self.store.job_write_failure_message = "jobs table locked"
        ReconciliationService(self.store, self.gateway).reconcile(order.id)
        self.assertFalse(self.store.jobs[job.id].is_paid)

        payload = self._fix({"adminKey": _ADMIN_KEY}).json()

        self.assertEqual(payload["fixedOrders"], [order.id])
        self.assertTrue(self.store.jobs[job.id].is_paid)

    def test_admin_key_in_header_is_accepted(self) -> None:
        response = self._fix({}, headers={"X-Admin-Key": _ADMIN_KEY})

        self.assertEqual(response.status_code, 200)

    def test_invalid_admin_key_is_rejected(self) -> None:
        job = self.store.create_job(original_url="https://cdn.example/a.jpg")
        order = self._paid_order(job_id=job.id)
        cases = {
            "wrong_body_key": ({"orderId": order.id, "adminKey": "nope"}, None),
            "wrong_header_key": ({"orderId": order.id}, {"X-Admin-Key": "nope"}),
            "no_key": ({"orderId": order.id}, None),
            "no_body": (None, None),
            "non_ascii_body_key": ({"orderId": order.id, "adminKey": "clé"}, None),
            "non_ascii_header_key": ({"orderId": order.id}, {"X-Admin-Key": b"cl\xe9"}),
        }
        for name, (body, headers) in cases.items():
            with self.subTest(case=name):
                response = self._fix(body, headers=headers)
                self.assertEqual(response.status_code, 401)
                self.assertEqual(response.json()["code"], "UNAUTHORIZED")

        self.assertFalse(self.store.jobs[job.id].is_paid)

    def test_unset_admin_key_rejects_every_call(self) -> None:
        app = create_app(Settings(auth_provider="mock", payment_gateway="mock"), gateway=MockPaymentGateway())
        client = TestClient(app)

        response = client.post("/api/v1/admin/fix-payment", json={"adminKey": ""})

        self.assertEqual(response.status_code, 401)


class SearchOrdersTests(_AdminCase):
    def setUp(self) -> None:
        super().setUp()
        self.paid_job = self.store.create_job(original_url="https://cdn.example/paid.jpg")
        self.store.jobs[self.paid_job.id].output_url = "https://cdn.example/paid-colored.jpg"
        self.store.mark_job_paid(self.paid_job.id)
        self.unpaid_job = self.store.create_job(original_url="https://cdn.example/unpaid.jpg")

        self.paid_order = self._paid_order(job_id=self.paid_job.id, order_id="order_1700000000000_abc123")
        self.store.attach_gateway_order(order_id=self.paid_order.id, gateway_order_id="OMO2401011234")
        self.unpaid_order = self.store.create_order(
            amount=4900,
            currency="INR",
            job_id=self.unpaid_job.id,
            order_id="order_1700000000001_def456",
        )

    def _search(self, params: dict, *, key: str | None = _ADMIN_KEY):
        headers = {"X-Admin-Key": key} if key is not None else {}
        return self.client.get("/api/v1/admin/search-orders", params=params, headers=headers)

    def test_search_by_order_id_fragment_returns_paid_jobs_only(self) -> None:
        response = self._search({"orderId": "order_17000000000"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["count"], 1)
        result = payload["results"][0]
        self.assertEqual(result["orderId"], self.paid_order.id)
        self.assertEqual(result["gatewayOrderId"], "OMO2401011234")
        self.assertEqual(result["orderStatus"], "PAID")
        self.assertEqual(result["coloredImageUrl"], "https://cdn.example/paid-colored.jpg")
        self.assertEqual(result["originalUrl"], "https://cdn.example/paid.jpg")
        self.assertTrue(result["isPaid"])

    def test_search_by_gateway_order_id_fragment(self) -> None:
        payload = self._search({"gatewayOrderId": "2401011"}).json()

        self.assertEqual([row["orderId"] for row in payload["results"]], [self.paid_order.id])

    def test_search_follows_relinked_orders(self) -> None:
        self.store.link_order_to_job(order_id=self.unpaid_order.id, job_id=self.paid_job.id)
        self.store.link_order_to_job(order_id=self.paid_order.id, job_id=self.unpaid_job.id)

        payload = self._search({"orderId": "order_17000000000"}).json()

        self.assertEqual([row["orderId"] for row in payload["results"]], [self.unpaid_order.id])
        self.assertEqual(payload["results"][0]["originalUrl"], "https://cdn.example/paid.jpg")

    def test_search_requires_a_query(self) -> None:
        response = self._search({})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    def test_search_requires_admin_key(self) -> None:
        for key in (None, "nope"):
            with self.subTest(key=key):
                response = self._search({"orderId": "order"}, key=key)
                self.assertEqual(response.status_code, 401)
