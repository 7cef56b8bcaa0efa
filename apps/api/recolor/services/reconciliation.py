"""Payment reconciliation service layer.

This is the only code allowed to move an order to PAID and to flip the paid
flag of the job it pays for. Client polls, gateway webhooks and the pending
order sweep all end in ``_apply_outcome``, and the store's atomic settlement
calls make concurrent arrivals converge on one result.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
import logging

from recolor.adapters.gateway import (
    GatewayQueryError,
    PaymentGateway,
    WebhookEvent,
    WebhookPayloadError,
    WebhookVerificationError,
    WebhookVerifier,
)
from recolor.core.logging_safety import safe_log_identifier
from recolor.domain.order_fsm import is_terminal
from recolor.domain.payment_states import PaymentOutcome, outcome_for_gateway_state, target_order_status
from recolor.errors import ApiError, not_found
from recolor.repositories.memory import InMemoryStore, OrderRecord, TransactionRecord
from recolor.schemas.order import OrderStatus

logger = logging.getLogger(__name__)

_MAX_SWEEP_ERROR_DETAILS = 10


@dataclass(slots=True)
class ReconcileResult:
    success: bool
    order: OrderRecord
    job_id: str | None
    transaction: TransactionRecord | None = None
    gateway_state: str | None = None
    gateway_error: bool = False


@dataclass(slots=True)
class WebhookResult:
    applied: bool
    event: WebhookEvent
    order_status: OrderStatus | None = None


@dataclass(slots=True)
class SweepSummary:
    checked: int = 0
    successful: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: int = 0
    error_details: list[str] = field(default_factory=list)

    def record_error(self, detail: str) -> None:
        self.errors += 1
        if len(self.error_details) < _MAX_SWEEP_ERROR_DETAILS:
            self.error_details.append(detail)


class ReconciliationService:
    def __init__(self, store: InMemoryStore, gateway: PaymentGateway) -> None:
        self._store = store
        self._gateway = gateway

    def reconcile(self, order_id: str) -> ReconcileResult:
        """Resolve the true payment state of an order and apply it at most once."""
        order = self._store.get_order(order_id)
        if order is None:
            logger.warning("reconcile.rejected order_id=%s code=RESOURCE_NOT_FOUND", order_id)
            raise not_found()

        if is_terminal(order.status):
            logger.info("reconcile.short_circuit order_id=%s status=%s", order.id, order.status.value)
            return ReconcileResult(
                success=order.status is OrderStatus.PAID,
                order=order,
                job_id=order.job_id,
                transaction=self._store.get_success_transaction(order.id),
            )

        if not order.gateway_order_id:
            logger.info("reconcile.skipped order_id=%s status=%s reason=no_gateway_order", order.id, order.status.value)
            return ReconcileResult(success=False, order=order, job_id=order.job_id)

        try:
            gateway_status = self._gateway.get_order_status(order.id)
        except GatewayQueryError as exc:
            # The local row stays the system of record; the next poll, webhook or sweep retries.
            logger.warning(
                "reconcile.gateway_query_failed order_id=%s status=%s reason=%s",
                order.id,
                order.status.value,
                exc,
            )
            return ReconcileResult(success=False, order=order, job_id=order.job_id, gateway_error=True)

        outcome = outcome_for_gateway_state(gateway_status.state)
        if outcome is None:
            logger.warning(
                "reconcile.unknown_gateway_state order_id=%s status=%s gateway_state=%s",
                order.id,
                order.status.value,
                gateway_status.state,
            )
            return ReconcileResult(
                success=False,
                order=order,
                job_id=order.job_id,
                gateway_state=gateway_status.state,
            )

        result = self._apply_outcome(
            order_id=order.id,
            outcome=outcome,
            payment_id=gateway_status.transaction_id,
            record_failure_transaction=False,
            source="poll",
        )
        result.gateway_state = gateway_status.state
        return result

    def handle_webhook(
        self,
        *,
        verifier: WebhookVerifier | None,
        headers: Mapping[str, str],
        raw_body: bytes,
        correlation_id: str,
    ) -> WebhookResult:
        """Authenticate a gateway delivery, then apply the outcome it reports."""
        safe_correlation_id = safe_log_identifier(correlation_id, prefix="cid")
        if verifier is None:
            logger.error("webhook.rejected correlation_id=%s code=WEBHOOK_NOT_CONFIGURED", safe_correlation_id)
            raise ApiError(
                status_code=503,
                code="WEBHOOK_NOT_CONFIGURED",
                message="Webhook credentials are not configured",
            )

        try:
            event = verifier.verify(headers=headers, raw_body=raw_body)
        except WebhookVerificationError as exc:
            logger.warning(
                "webhook.rejected gateway=%s correlation_id=%s code=UNAUTHORIZED reason=%s",
                verifier.gateway_name,
                safe_correlation_id,
                exc,
            )
            raise ApiError(status_code=401, code="UNAUTHORIZED", message="Invalid webhook signature") from exc
        except WebhookPayloadError as exc:
            logger.warning(
                "webhook.rejected gateway=%s correlation_id=%s code=VALIDATION_ERROR reason=%s",
                verifier.gateway_name,
                safe_correlation_id,
                exc,
            )
            raise ApiError(status_code=400, code="VALIDATION_ERROR", message="Invalid webhook payload") from exc

        if event.outcome is None:
            logger.info(
                "webhook.ignored gateway=%s correlation_id=%s event_type=%s state=%s reason=unhandled_event",
                event.gateway,
                safe_correlation_id,
                event.event_type,
                event.state,
            )
            return WebhookResult(applied=False, event=event)

        if not event.merchant_order_id:
            logger.warning(
                "webhook.ignored gateway=%s correlation_id=%s event_type=%s reason=missing_order_id",
                event.gateway,
                safe_correlation_id,
                event.event_type,
            )
            return WebhookResult(applied=False, event=event)

        if self._store.get_order(event.merchant_order_id) is None:
            # Gateway dashboards send test deliveries for orders that never existed here.
            logger.warning(
                "webhook.ignored gateway=%s correlation_id=%s order_id=%s reason=unknown_order",
                event.gateway,
                safe_correlation_id,
                event.merchant_order_id,
            )
            return WebhookResult(applied=False, event=event)

        result = self._apply_outcome(
            order_id=event.merchant_order_id,
            outcome=event.outcome,
            payment_id=event.payment_id,
            record_failure_transaction=True,
            source=event.gateway,
        )
        logger.info(
            "webhook.processed gateway=%s correlation_id=%s order_id=%s outcome=%s status=%s",
            event.gateway,
            safe_correlation_id,
            event.merchant_order_id,
            event.outcome.value,
            result.order.status.value,
        )
        return WebhookResult(applied=True, event=event, order_status=result.order.status)

    def reconcile_pending_orders(self, *, min_age_seconds: int, limit: int) -> SweepSummary:
        """Reconcile stale PENDING orders oldest first; one bad order never stops the sweep."""
        created_before = datetime.now(UTC) - timedelta(seconds=min_age_seconds)
        pending_orders = self._store.list_pending_orders(created_before=created_before, limit=limit)
        summary = SweepSummary(checked=len(pending_orders))
        logger.info("sweep.started pending=%s limit=%s", len(pending_orders), limit)

        for order in pending_orders:
            try:
                result = self.reconcile(order.id)
            except (ApiError, RuntimeError) as exc:
                logger.error("sweep.order_failed order_id=%s reason=%s", order.id, exc)
                summary.record_error(f"Order {order.id}: {exc}")
                continue

            if result.gateway_error:
                summary.record_error(f"Order {order.id}: gateway status query failed")
            elif result.order.status is OrderStatus.PAID:
                summary.successful += 1
            elif result.order.status in (OrderStatus.FAILED, OrderStatus.CANCELLED):
                summary.failed += 1
            else:
                summary.still_pending += 1

        logger.info(
            "sweep.completed checked=%s successful=%s failed=%s still_pending=%s errors=%s",
            summary.checked,
            summary.successful,
            summary.failed,
            summary.still_pending,
            summary.errors,
        )
        return summary

    def _apply_outcome(
        self,
        *,
        order_id: str,
        outcome: PaymentOutcome,
        payment_id: str | None,
        record_failure_transaction: bool,
        source: str,
    ) -> ReconcileResult:
        safe_payment_id = safe_log_identifier(payment_id, prefix="pay")

        if outcome is PaymentOutcome.SUCCESS:
            settlement = self._store.settle_order_success(order_id=order_id, payment_id=payment_id)
            order = settlement.order
            if settlement.transaction_created:
                logger.info(
                    "payment.settled source=%s order_id=%s payment_id=%s transition_applied=%s amount=%s",
                    source,
                    order.id,
                    safe_payment_id,
                    settlement.transition_applied,
                    order.amount,
                )
            else:
                logger.info(
                    "payment.replayed source=%s order_id=%s payment_id=%s status=%s",
                    source,
                    order.id,
                    safe_payment_id,
                    order.status.value,
                )
            if order.status is OrderStatus.PAID:
                self._mark_linked_job_paid(order=order, source=source)
            return ReconcileResult(
                success=order.status is OrderStatus.PAID,
                order=order,
                job_id=order.job_id,
                transaction=settlement.transaction,
            )

        if outcome is PaymentOutcome.FAILURE:
            settlement = self._store.settle_order_failure(
                order_id=order_id,
                payment_id=payment_id,
                record_transaction=record_failure_transaction,
            )
            order = settlement.order
            logger.info(
                "payment.failed source=%s order_id=%s payment_id=%s transition_applied=%s status=%s",
                source,
                order.id,
                safe_payment_id,
                settlement.transition_applied,
                order.status.value,
            )
            return ReconcileResult(
                success=order.status is OrderStatus.PAID,
                order=order,
                job_id=order.job_id,
                transaction=settlement.transaction,
            )

        target_status = target_order_status(outcome)
        if target_status is None:
            order = self._store.get_order(order_id)
            if order is None:
                raise not_found()
            logger.info("payment.pending source=%s order_id=%s status=%s", source, order.id, order.status.value)
            return ReconcileResult(success=order.status is OrderStatus.PAID, order=order, job_id=order.job_id)

        order, applied = self._store.transition_order_status(order_id=order_id, new_status=target_status)
        logger.info(
            "payment.%s source=%s order_id=%s transition_applied=%s status=%s",
            outcome.value.lower(),
            source,
            order.id,
            applied,
            order.status.value,
        )
        return ReconcileResult(success=order.status is OrderStatus.PAID, order=order, job_id=order.job_id)

    def _mark_linked_job_paid(self, *, order: OrderRecord, source: str) -> None:
        """Propagate PAID to the linked job; misses are left for the admin repair sweep."""
        if order.job_id is None:
            logger.warning("payment.job_unlinked source=%s order_id=%s", source, order.id)
            return

        try:
            job = self._store.mark_job_paid(order.job_id)
        except RuntimeError as exc:
            logger.error(
                "payment.job_mark_failed source=%s order_id=%s job_id=%s reason=%s",
                source,
                order.id,
                order.job_id,
                type(exc).__name__,
            )
            return

        if job is None:
            logger.error("payment.job_missing source=%s order_id=%s job_id=%s", source, order.id, order.job_id)
            return
        logger.info("payment.job_paid source=%s order_id=%s job_id=%s", source, order.id, job.id)
