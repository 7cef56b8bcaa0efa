"""Job-paid linkage service layer."""

import logging

from recolor.errors import ApiError, not_found
from recolor.repositories.memory import InMemoryStore
from recolor.schemas.order import OrderStatus, VerifyPaymentResponse

logger = logging.getLogger(__name__)


class JobPaymentService:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def confirm_job_paid(self, *, order_id: str, job_id: str) -> VerifyPaymentResponse:
        """Unlock a job for a PAID order, relinking the order to it when needed.

        The job row is never touched unless the order is PAID. A relink
        failure is logged and left for the admin repair tool.
        """
        order = self._store.get_order(order_id)
        if order is None:
            raise not_found()

        if order.status is not OrderStatus.PAID:
            logger.info(
                "verify.rejected order_id=%s job_id=%s code=PAYMENT_NOT_COMPLETED status=%s",
                order.id,
                job_id,
                order.status.value,
            )
            raise ApiError(
                status_code=402,
                code="PAYMENT_NOT_COMPLETED",
                message="Payment not completed",
                details={"status": order.status.value},
            )

        job = self._store.mark_job_paid(job_id)
        if job is None:
            raise not_found()

        if order.job_id != job.id:
            previous_job_id = order.job_id
            try:
                self._store.link_order_to_job(order_id=order.id, job_id=job.id)
            except RuntimeError as exc:
                logger.error(
                    "verify.relink_failed order_id=%s job_id=%s previous_job_id=%s reason=%s",
                    order.id,
                    job.id,
                    previous_job_id,
                    type(exc).__name__,
                )
            else:
                logger.info(
                    "verify.relinked order_id=%s job_id=%s previous_job_id=%s",
                    order.id,
                    job.id,
                    previous_job_id,
                )

        logger.info("verify.confirmed order_id=%s job_id=%s", order.id, job.id)
        return VerifyPaymentResponse(
            success=True,
            job_id=job.id,
            is_paid=job.is_paid,
            message="Payment verified",
        )
