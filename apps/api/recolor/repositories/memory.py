"""In-memory repositories used by the API and tests.

Every mutation runs under one re-entrant lock so a check and its write form a
single atomic step, the same guarantee a database gives through conditional
updates and unique indexes. Handlers never read-modify-write records directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import threading
import time
from typing import Any
from typing import Literal
from uuid import uuid4

from recolor.domain.order_fsm import can_transition
from recolor.schemas.job import JobStatus
from recolor.schemas.order import OrderStatus, TransactionStatus, TransactionType

_SETTLEMENT_FAILPOINT_STAGES = ("after_status", "after_transaction")


@dataclass(slots=True)
class JobRecord:
    id: str
    original_url: str
    status: JobStatus
    created_at: datetime
    user_id: str | None = None
    output_url: str | None = None
    is_paid: bool = False
    updated_at: datetime | None = None


@dataclass(slots=True)
class OrderRecord:
    id: str
    amount: int
    currency: str
    status: OrderStatus
    created_at: datetime
    user_id: str | None = None
    job_id: str | None = None
    credits: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    gateway_order_id: str | None = None
    payment_id: str | None = None
    payment_status: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class TransactionRecord:
    id: str
    order_id: str
    user_id: str | None
    amount: int
    credits: int
    type: TransactionType
    status: TransactionStatus
    created_at: datetime
    gateway_order_id: str | None = None
    payment_id: str | None = None


@dataclass(slots=True)
class SettlementResult:
    order: OrderRecord
    transition_applied: bool
    transaction: TransactionRecord | None = None
    transaction_created: bool = False


def generate_order_id() -> str:
    return f"order_{int(time.time() * 1000)}_{uuid4().hex[:6]}"


@dataclass(slots=True)
class InMemoryStore:
    """Deterministic persistence layer for orders, jobs and transactions."""

    jobs: dict[str, JobRecord] = field(default_factory=dict)
    orders: dict[str, OrderRecord] = field(default_factory=dict)
    transactions: list[TransactionRecord] = field(default_factory=list)
    success_transaction_by_order: dict[str, TransactionRecord] = field(default_factory=dict)
    order_ids_by_job: dict[str, set[str]] = field(default_factory=dict)
    user_credits: dict[str, int] = field(default_factory=dict)
    order_write_count: int = 0
    job_write_count: int = 0
    job_write_failure_message: str | None = None
    order_link_failure_message: str | None = None
    settlement_failpoint_order_id: str | None = None
    settlement_failpoint_stage: Literal["after_status", "after_transaction"] | None = None
    settlement_failpoint_message: str = "Injected settlement persistence failure"
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    # Jobs

    def create_job(
        self,
        *,
        original_url: str,
        user_id: str | None = None,
        job_id: str | None = None,
    ) -> JobRecord:
        with self._lock:
            now = datetime.now(UTC)
            job = JobRecord(
                id=job_id or str(uuid4()),
                original_url=original_url,
                status=JobStatus.PENDING,
                created_at=now,
                user_id=user_id,
                updated_at=now,
            )
            if job.id in self.jobs:
                raise ValueError(f"Job {job.id} already exists")
            self.jobs[job.id] = job
            self.job_write_count += 1
            return job

    def get_job(self, job_id: str) -> JobRecord | None:
        return self.jobs.get(job_id)

    def mark_job_paid(self, job_id: str) -> JobRecord | None:
        """Set the monotonic paid flag; returns ``None`` when the job does not exist."""
        with self._lock:
            if self.job_write_failure_message is not None:
                message = self.job_write_failure_message
                self.job_write_failure_message = None
                raise RuntimeError(message)

            job = self.jobs.get(job_id)
            if job is None:
                return None
            if not job.is_paid:
                job.is_paid = True
                job.updated_at = datetime.now(UTC)
                self.job_write_count += 1
            return job

    # Orders

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        job_id: str | None,
        user_id: str | None = None,
        credits: int = 0,
        metadata: dict[str, Any] | None = None,
        order_id: str | None = None,
    ) -> OrderRecord:
        with self._lock:
            now = datetime.now(UTC)
            order_metadata = dict(metadata or {})
            if job_id is not None:
                order_metadata["jobId"] = job_id
            order = OrderRecord(
                id=order_id or generate_order_id(),
                amount=amount,
                currency=currency,
                status=OrderStatus.PENDING,
                created_at=now,
                user_id=user_id,
                job_id=job_id,
                credits=credits,
                metadata=order_metadata,
                updated_at=now,
            )
            if order.id in self.orders:
                raise ValueError(f"Order {order.id} already exists")
            self.orders[order.id] = order
            if job_id is not None:
                self.order_ids_by_job.setdefault(job_id, set()).add(order.id)
            self.order_write_count += 1
            return order

    def get_order(self, order_id: str) -> OrderRecord | None:
        return self.orders.get(order_id)

    def attach_gateway_order(self, *, order_id: str, gateway_order_id: str) -> OrderRecord:
        with self._lock:
            order = self._require_order(order_id)
            order.gateway_order_id = gateway_order_id
            order.updated_at = datetime.now(UTC)
            self.order_write_count += 1
            return order

    def link_order_to_job(self, *, order_id: str, job_id: str) -> OrderRecord:
        """Point an order at a job, keeping the job index and metadata mirror in step."""
        with self._lock:
            if self.order_link_failure_message is not None:
                message = self.order_link_failure_message
                self.order_link_failure_message = None
                raise RuntimeError(message)

            order = self._require_order(order_id)
            if order.job_id == job_id:
                return order
            if order.job_id is not None:
                self.order_ids_by_job.get(order.job_id, set()).discard(order.id)
            order.job_id = job_id
            order.metadata["jobId"] = job_id
            order.updated_at = datetime.now(UTC)
            self.order_ids_by_job.setdefault(job_id, set()).add(order.id)
            self.order_write_count += 1
            return order

    def transition_order_status(self, *, order_id: str, new_status: OrderStatus) -> tuple[OrderRecord, bool]:
        """Compare-and-set the order status; returns the order and whether it changed."""
        with self._lock:
            order = self._require_order(order_id)
            if not can_transition(order.status, new_status):
                return order, False
            order.status = new_status
            order.updated_at = datetime.now(UTC)
            self.order_write_count += 1
            return order, True

    def list_paid_orders(self, *, limit: int) -> list[OrderRecord]:
        with self._lock:
            paid = [order for order in self.orders.values() if order.status is OrderStatus.PAID]
        paid.sort(key=lambda record: record.created_at, reverse=True)
        return paid[:limit]

    def list_pending_orders(self, *, created_before: datetime, limit: int) -> list[OrderRecord]:
        """Oldest-first PENDING orders that already have a gateway order."""
        with self._lock:
            pending = [
                order
                for order in self.orders.values()
                if order.status is OrderStatus.PENDING
                and order.gateway_order_id is not None
                and order.created_at < created_before
            ]
        pending.sort(key=lambda record: record.created_at)
        return pending[:limit]

    def search_paid_job_orders(
        self,
        *,
        order_id_fragment: str | None = None,
        gateway_order_id_fragment: str | None = None,
        limit: int,
    ) -> list[tuple[OrderRecord, JobRecord]]:
        """Join orders to their paid jobs, newest order first.

        ``order_id_fragment`` wins when both fragments are given.
        """
        with self._lock:
            rows: list[tuple[OrderRecord, JobRecord]] = []
            for job in self.jobs.values():
                if not job.is_paid:
                    continue
                for order_id in self.order_ids_by_job.get(job.id, set()):
                    order = self.orders[order_id]
                    if order_id_fragment is not None:
                        if order_id_fragment not in order.id:
                            continue
                    elif gateway_order_id_fragment is not None:
                        if gateway_order_id_fragment not in (order.gateway_order_id or ""):
                            continue
                    rows.append((order, job))
        rows.sort(key=lambda row: row[0].created_at, reverse=True)
        return rows[:limit]

    # Transactions

    def get_success_transaction(self, order_id: str) -> TransactionRecord | None:
        return self.success_transaction_by_order.get(order_id)

    def transactions_for_order(self, order_id: str) -> list[TransactionRecord]:
        with self._lock:
            return [record for record in self.transactions if record.order_id == order_id]

    def settle_order_success(self, *, order_id: str, payment_id: str | None) -> SettlementResult:
        """Atomically mark an order PAID, record its single SUCCESS transaction and credit the buyer.

        Repeated or concurrent calls converge: the status only moves when the
        lifecycle allows it, and the SUCCESS transaction plus credit increment
        happen only when no SUCCESS transaction exists yet. Any failure inside
        the unit restores every touched field.
        """
        with self._lock:
            order = self._require_order(order_id)
            previous_status = order.status
            previous_payment_id = order.payment_id
            previous_payment_status = order.payment_status
            previous_updated_at = order.updated_at
            previous_order_write_count = self.order_write_count
            previous_transaction_count = len(self.transactions)
            previous_credits = self.user_credits.get(order.user_id) if order.user_id else None
            had_credits = order.user_id is not None and order.user_id in self.user_credits

            try:
                transition_applied = False
                if can_transition(order.status, OrderStatus.PAID):
                    order.status = OrderStatus.PAID
                    # A failed attempt's payment id never carries over to the capture.
                    if payment_id is not None or previous_status is OrderStatus.FAILED:
                        order.payment_id = payment_id
                    order.payment_status = TransactionStatus.SUCCESS.value
                    order.updated_at = datetime.now(UTC)
                    self.order_write_count += 1
                    transition_applied = True
                self._maybe_raise_settlement_failpoint(order_id=order.id, stage="after_status")

                if order.status is not OrderStatus.PAID:
                    return SettlementResult(order=order, transition_applied=False)

                existing = self.success_transaction_by_order.get(order.id)
                if existing is not None:
                    return SettlementResult(
                        order=order,
                        transition_applied=transition_applied,
                        transaction=existing,
                        transaction_created=False,
                    )

                transaction = self._build_transaction(order=order, status=TransactionStatus.SUCCESS)
                self.transactions.append(transaction)
                self.success_transaction_by_order[order.id] = transaction
                if order.credits > 0 and order.user_id is not None:
                    self.user_credits[order.user_id] = self.user_credits.get(order.user_id, 0) + order.credits
                self._maybe_raise_settlement_failpoint(order_id=order.id, stage="after_transaction")
            except Exception:
                order.status = previous_status
                order.payment_id = previous_payment_id
                order.payment_status = previous_payment_status
                order.updated_at = previous_updated_at
                self.order_write_count = previous_order_write_count
                del self.transactions[previous_transaction_count:]
                self.success_transaction_by_order.pop(order.id, None)
                if order.user_id is not None:
                    if had_credits and previous_credits is not None:
                        self.user_credits[order.user_id] = previous_credits
                    else:
                        self.user_credits.pop(order.user_id, None)
                raise

            return SettlementResult(
                order=order,
                transition_applied=transition_applied,
                transaction=transaction,
                transaction_created=True,
            )

    def settle_order_failure(
        self,
        *,
        order_id: str,
        payment_id: str | None,
        record_transaction: bool,
    ) -> SettlementResult:
        """Move an order to FAILED; the FAILED transaction is written only with the transition."""
        with self._lock:
            order = self._require_order(order_id)
            if not can_transition(order.status, OrderStatus.FAILED):
                return SettlementResult(order=order, transition_applied=False)

            order.status = OrderStatus.FAILED
            order.payment_id = payment_id or order.payment_id
            order.payment_status = TransactionStatus.FAILED.value
            order.updated_at = datetime.now(UTC)
            self.order_write_count += 1

            transaction = None
            if record_transaction:
                transaction = self._build_transaction(order=order, status=TransactionStatus.FAILED)
                self.transactions.append(transaction)
            return SettlementResult(
                order=order,
                transition_applied=True,
                transaction=transaction,
                transaction_created=transaction is not None,
            )

    def _require_order(self, order_id: str) -> OrderRecord:
        order = self.orders.get(order_id)
        if order is None:
            raise KeyError(order_id)
        return order

    @staticmethod
    def _build_transaction(*, order: OrderRecord, status: TransactionStatus) -> TransactionRecord:
        succeeded = status is TransactionStatus.SUCCESS
        return TransactionRecord(
            id=str(uuid4()),
            order_id=order.id,
            user_id=order.user_id,
            amount=order.amount if succeeded else 0,
            credits=order.credits if succeeded else 0,
            type=TransactionType.IMAGE_PURCHASE,
            status=status,
            created_at=datetime.now(UTC),
            gateway_order_id=order.gateway_order_id,
            payment_id=order.payment_id,
        )

    def _maybe_raise_settlement_failpoint(
        self,
        *,
        order_id: str,
        stage: Literal["after_status", "after_transaction"],
    ) -> None:
        if stage not in _SETTLEMENT_FAILPOINT_STAGES:
            return
        if self.settlement_failpoint_order_id != order_id:
            return
        if self.settlement_failpoint_stage != stage:
            return

        self.settlement_failpoint_order_id = None
        self.settlement_failpoint_stage = None
        raise RuntimeError(self.settlement_failpoint_message)
