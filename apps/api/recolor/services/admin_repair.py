"""Admin repair and order search service layer."""

from dataclasses import dataclass, field
from enum import Enum
import logging

from recolor.repositories.memory import InMemoryStore
from recolor.schemas.admin import OrderSearchResult
from recolor.schemas.order import OrderStatus

logger = logging.getLogger(__name__)


class RepairFailureReason(str, Enum):
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ORDER_NOT_PAID = "ORDER_NOT_PAID"
    NO_JOB_ID = "NO_JOB_ID"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    ALREADY_PAID = "ALREADY_PAID"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_REASON_MESSAGES: dict[RepairFailureReason, str] = {
    RepairFailureReason.ORDER_NOT_FOUND: "Order not found",
    RepairFailureReason.ORDER_NOT_PAID: "Order is not paid",
    RepairFailureReason.NO_JOB_ID: "Order has no linked job",
    RepairFailureReason.JOB_NOT_FOUND: "Linked job not found",
    RepairFailureReason.ALREADY_PAID: "Job is already marked paid",
    RepairFailureReason.INTERNAL_ERROR: "Failed to update job",
}
# Expected in bulk mode; reported only for an explicit single-order request.
_BULK_SKIP_REASONS = {RepairFailureReason.NO_JOB_ID, RepairFailureReason.ALREADY_PAID}


@dataclass(slots=True)
class RepairOutcome:
    order_id: str
    job_id: str | None = None
    reason: RepairFailureReason | None = None
    error: str | None = None

    @property
    def fixed(self) -> bool:
        return self.reason is None


@dataclass(slots=True)
class RepairReport:
    fixed_orders: list[str] = field(default_factory=list)
    failures: list[RepairOutcome] = field(default_factory=list)

    @property
    def fixed_count(self) -> int:
        return len(self.fixed_orders)

    def add(self, outcome: RepairOutcome) -> None:
        if outcome.fixed:
            self.fixed_orders.append(outcome.order_id)
        else:
            self.failures.append(outcome)


class AdminRepairService:
    def __init__(self, store: InMemoryStore, *, batch_limit: int, search_limit: int) -> None:
        self._store = store
        self._batch_limit = batch_limit
        self._search_limit = search_limit

    def repair(self, order_id: str | None = None) -> RepairReport:
        """Repair one order when ``order_id`` is given, else sweep recent PAID orders."""
        if order_id:
            report = RepairReport()
            report.add(self.fix_order(order_id))
            return report
        return self.fix_paid_orders()

    def fix_order(self, order_id: str) -> RepairOutcome:
        """Re-apply the paid flag for one order; never raises."""
        order = self._store.get_order(order_id)
        if order is None:
            return self._failure(order_id, None, RepairFailureReason.ORDER_NOT_FOUND)
        if order.status is not OrderStatus.PAID:
            return self._failure(order.id, order.job_id, RepairFailureReason.ORDER_NOT_PAID)
        if order.job_id is None:
            return self._failure(order.id, None, RepairFailureReason.NO_JOB_ID)

        job = self._store.get_job(order.job_id)
        if job is None:
            return self._failure(order.id, order.job_id, RepairFailureReason.JOB_NOT_FOUND)
        if job.is_paid:
            return self._failure(order.id, job.id, RepairFailureReason.ALREADY_PAID)

        try:
            updated = self._store.mark_job_paid(job.id)
        except RuntimeError as exc:
            logger.error(
                "repair.job_write_failed order_id=%s job_id=%s reason=%s",
                order.id,
                job.id,
                type(exc).__name__,
            )
            return self._failure(order.id, job.id, RepairFailureReason.INTERNAL_ERROR, error=str(exc))
        if updated is None:
            return self._failure(order.id, job.id, RepairFailureReason.JOB_NOT_FOUND)

        logger.info("repair.fixed order_id=%s job_id=%s", order.id, job.id)
        return RepairOutcome(order_id=order.id, job_id=job.id)

    def fix_paid_orders(self) -> RepairReport:
        report = RepairReport()
        paid_orders = self._store.list_paid_orders(limit=self._batch_limit)
        for order in paid_orders:
            outcome = self.fix_order(order.id)
            if outcome.reason in _BULK_SKIP_REASONS:
                continue
            report.add(outcome)

        logger.info(
            "repair.batch_completed scanned=%s fixed=%s errors=%s",
            len(paid_orders),
            report.fixed_count,
            len(report.failures),
        )
        return report

    def search_orders(
        self,
        *,
        order_id: str | None = None,
        gateway_order_id: str | None = None,
    ) -> list[OrderSearchResult]:
        rows = self._store.search_paid_job_orders(
            order_id_fragment=order_id or None,
            gateway_order_id_fragment=gateway_order_id or None,
            limit=self._search_limit,
        )
        return [
            OrderSearchResult(
                order_id=order.id,
                gateway_order_id=order.gateway_order_id,
                order_status=order.status,
                colored_image_url=job.output_url,
                original_url=job.original_url,
                job_status=job.status,
                job_created_at=job.created_at,
                is_paid=job.is_paid,
            )
            for order, job in rows
        ]

    @staticmethod
    def _failure(
        order_id: str,
        job_id: str | None,
        reason: RepairFailureReason,
        *,
        error: str | None = None,
    ) -> RepairOutcome:
        logger.warning("repair.skipped order_id=%s job_id=%s reason=%s", order_id, job_id, reason.value)
        return RepairOutcome(
            order_id=order_id,
            job_id=job_id,
            reason=reason,
            error=error or _REASON_MESSAGES[reason],
        )
