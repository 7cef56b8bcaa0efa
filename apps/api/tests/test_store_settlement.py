"""Atomic settlement tests for the in-memory store."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import unittest

from recolor.repositories.memory import InMemoryStore
from recolor.schemas.order import OrderStatus, TransactionStatus


class SettlementTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.job = self.store.create_job(original_url="https://cdn.example/original.jpg", user_id="user-1")
        self.order = self.store.create_order(
            amount=4900,
            currency="INR",
            job_id=self.job.id,
            user_id="user-1",
            credits=1,
        )

    def test_create_order_mirrors_job_link_into_metadata(self) -> None:
        self.assertEqual(self.order.job_id, self.job.id)
        self.assertEqual(self.order.metadata["jobId"], self.job.id)
        self.assertEqual(self.store.order_ids_by_job[self.job.id], {self.order.id})

    def test_success_settlement_is_applied_once(self) -> None:
        first = self.store.settle_order_success(order_id=self.order.id, payment_id="pay-1")
        second = self.store.settle_order_success(order_id=self.order.id, payment_id="pay-1")

        self.assertTrue(first.transition_applied)
        self.assertTrue(first.transaction_created)
        self.assertFalse(second.transition_applied)
        self.assertFalse(second.transaction_created)
        self.assertIs(second.transaction, first.transaction)
        self.assertEqual(self.store.orders[self.order.id].status, OrderStatus.PAID)
        self.assertEqual(self.store.orders[self.order.id].payment_status, "SUCCESS")
        self.assertEqual(len(self.store.transactions), 1)
        self.assertEqual(self.store.transactions[0].amount, 4900)
        self.assertEqual(self.store.user_credits["user-1"], 1)

    def test_concurrent_success_settlements_converge(self) -> None:
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(
                pool.map(
                    lambda index: self.store.settle_order_success(order_id=self.order.id, payment_id=f"pay-{index}"),
                    range(16),
                )
            )

        self.assertEqual(sum(result.transaction_created for result in results), 1)
        self.assertEqual(sum(result.transition_applied for result in results), 1)
        success = [record for record in self.store.transactions if record.status is TransactionStatus.SUCCESS]
        self.assertEqual(len(success), 1)
        self.assertEqual(self.store.user_credits["user-1"], 1)

    def test_failure_inside_settlement_rolls_back_everything(self) -> None:
        for stage in ("after_status", "after_transaction"):
            with self.subTest(stage=stage):
                store = InMemoryStore()
                order = store.create_order(amount=4900, currency="INR", job_id="job-x", user_id="user-2", credits=3)
                store.settlement_failpoint_order_id = order.id
                store.settlement_failpoint_stage = stage

                with self.assertRaises(RuntimeError):
                    store.settle_order_success(order_id=order.id, payment_id="pay-1")

                self.assertEqual(store.orders[order.id].status, OrderStatus.PENDING)
                self.assertIsNone(store.orders[order.id].payment_id)
                self.assertEqual(store.transactions, [])
                self.assertIsNone(store.get_success_transaction(order.id))
                self.assertNotIn("user-2", store.user_credits)

                retried = store.settle_order_success(order_id=order.id, payment_id="pay-1")
                self.assertTrue(retried.transaction_created)
                self.assertEqual(store.user_credits["user-2"], 3)

    def test_failure_settlement_records_transaction_only_with_transition(self) -> None:
        first = self.store.settle_order_failure(order_id=self.order.id, payment_id="pay-f", record_transaction=True)
        second = self.store.settle_order_failure(order_id=self.order.id, payment_id="pay-f", record_transaction=True)

        self.assertTrue(first.transaction_created)
        self.assertEqual(first.transaction.amount, 0)
        self.assertFalse(second.transition_applied)
        self.assertEqual(len(self.store.transactions_for_order(self.order.id)), 1)

    def test_late_capture_after_failure_settles_success(self) -> None:
        self.store.settle_order_failure(order_id=self.order.id, payment_id=None, record_transaction=False)
        result = self.store.settle_order_success(order_id=self.order.id, payment_id="pay-late")

        self.assertTrue(result.transition_applied)
        self.assertEqual(self.store.orders[self.order.id].status, OrderStatus.PAID)

    def test_late_capture_without_payment_id_drops_failed_attempt_id(self) -> None:
        self.store.settle_order_failure(order_id=self.order.id, payment_id="pay-failed", record_transaction=True)

        result = self.store.settle_order_success(order_id=self.order.id, payment_id=None)

        self.assertTrue(result.transition_applied)
        self.assertIsNone(self.store.orders[self.order.id].payment_id)
        self.assertIsNone(result.transaction.payment_id)

    def test_paid_order_never_moves_to_failed(self) -> None:
        self.store.settle_order_success(order_id=self.order.id, payment_id="pay-1")
        result = self.store.settle_order_failure(order_id=self.order.id, payment_id="pay-2", record_transaction=True)
        _, cancelled = self.store.transition_order_status(order_id=self.order.id, new_status=OrderStatus.CANCELLED)

        self.assertFalse(result.transition_applied)
        self.assertFalse(cancelled)
        self.assertEqual(self.store.orders[self.order.id].status, OrderStatus.PAID)
        self.assertEqual(self.store.orders[self.order.id].payment_id, "pay-1")

    def test_relink_moves_order_between_job_indexes(self) -> None:
        other = self.store.create_job(original_url="https://cdn.example/other.jpg")
        self.store.link_order_to_job(order_id=self.order.id, job_id=other.id)

        self.assertEqual(self.store.order_ids_by_job[self.job.id], set())
        self.assertEqual(self.store.order_ids_by_job[other.id], {self.order.id})
        self.assertEqual(self.store.orders[self.order.id].metadata["jobId"], other.id)

    def test_list_pending_orders_requires_gateway_order(self) -> None:
        with_gateway = self.store.create_order(amount=4900, currency="INR", job_id=self.job.id)
        self.store.attach_gateway_order(order_id=with_gateway.id, gateway_order_id="OMO1")

        pending = self.store.list_pending_orders(created_before=with_gateway.created_at.replace(year=2999), limit=10)

        self.assertEqual([order.id for order in pending], [with_gateway.id])
