"""
Durable delayed jobs for payment expiry.

Jobs live in :class:`~clinic.models.ScheduledJob`, keyed by a
deterministic ``job_id`` (``cancel-payment-<paymentId>``) so a payment
never has more than one pending cancellation.  ``run_payment_worker``
polls :func:`run_due_jobs`; rows are claimed with
``SELECT ... FOR UPDATE SKIP LOCKED`` so several workers can share the
table.
"""
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from clinic.models import Order, PaymentTransaction, ScheduledJob
from clinic.services import order_store
from clinic.services.audit import log_payment_event
from clinic.services.realtime import broadcast_payment_update

logger = logging.getLogger(__name__)

CANCEL_PAYMENT = 'cancel-payment'
RETRY_BASE_SECONDS = 30


def job_id_for(payment_id: int) -> str:
    return f'{CANCEL_PAYMENT}-{payment_id}'


def expiry_delay() -> timedelta:
    return timedelta(hours=settings.PAYMENT_EXPIRY_HOURS)


def schedule_cancellation(payment_id: int, delay: Optional[timedelta] = None) -> ScheduledJob:
    """Arm (or re-arm) the expiry job for ``payment_id``.

    A waiting job is replaced with the new run time; a job that is
    currently running is left alone unless its lease has lapsed.
    """
    run_at = timezone.now() + (expiry_delay() if delay is None else delay)
    job_id = job_id_for(payment_id)
    with transaction.atomic():
        job = ScheduledJob.objects.select_for_update().filter(job_id=job_id).first()
        if job is None:
            try:
                with transaction.atomic():
                    job = ScheduledJob.objects.create(
                        job_id=job_id, name=CANCEL_PAYMENT, payload={'paymentId': payment_id}, run_at=run_at,
                    )
            except IntegrityError:
                job = ScheduledJob.objects.select_for_update().get(job_id=job_id)
            else:
                logger.info('Scheduled %s at %s', job_id, run_at.isoformat())
                return job
        if job.status == ScheduledJob.STATUS_ACTIVE and job.updated_at >= _lease_cutoff():
            logger.info('Job %s is running; not rescheduling', job_id)
            return job
        job.status = ScheduledJob.STATUS_WAITING
        job.run_at = run_at
        job.attempts = 0
        job.last_error = ''
        job.payload = {'paymentId': payment_id}
        job.save(update_fields=['status', 'run_at', 'attempts', 'last_error', 'payload', 'updated_at'])
    logger.info('Rescheduled %s at %s', job_id, run_at.isoformat())
    return job


def cancel_scheduled(payment_id: int) -> bool:
    deleted, _ = ScheduledJob.objects.filter(
        job_id=job_id_for(payment_id), status=ScheduledJob.STATUS_WAITING,
    ).delete()
    if deleted:
        logger.info('Removed scheduled %s', job_id_for(payment_id))
    return bool(deleted)


def process_cancel_payment(payment_id: int) -> str:
    """Expire ``payment_id`` if it is still pending and past its deadline."""
    payment = PaymentTransaction.objects.filter(id=payment_id).first()
    if payment is None:
        logger.warning('Expiry job: payment %s no longer exists', payment_id)
        return 'missing'
    if payment.status != PaymentTransaction.STATUS_PENDING:
        logger.info('Expiry job: payment %s already %s', payment_id, payment.status)
        return 'skipped'
    if payment.expired_at is None or timezone.now() <= payment.expired_at:
        return 'not_due'

    if not order_store.transition_payment(
        payment.id, PaymentTransaction.STATUS_EXPIRED, order_status=Order.STATUS_EXPIRED,
    ):
        logger.info('Expiry job: payment %s settled concurrently', payment_id)
        return 'skipped'

    payment.refresh_from_db()
    log_payment_event('payment_expired', payment)
    broadcast_payment_update(payment)
    logger.info('Payment %s (%s) expired', payment.id, payment.transaction_code)
    return 'expired'


HANDLERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    CANCEL_PAYMENT: lambda payload: process_cancel_payment(int(payload['paymentId'])),
}


def _retry_delay(attempts: int) -> timedelta:
    return timedelta(seconds=RETRY_BASE_SECONDS * (2 ** (attempts - 1)))


def _lease_cutoff():
    return timezone.now() - timedelta(seconds=settings.PAYMENT_JOB_LEASE_SECONDS)


def _claim_due(batch: int):
    now = timezone.now()
    # active rows past their lease belong to a worker that died mid-run
    due = Q(status=ScheduledJob.STATUS_WAITING, run_at__lte=now) | Q(
        status=ScheduledJob.STATUS_ACTIVE, updated_at__lt=_lease_cutoff(),
    )
    with transaction.atomic():
        jobs = list(
            ScheduledJob.objects.select_for_update(skip_locked=True)
            .filter(due)
            .order_by('run_at', 'id')[:batch]
        )
        if jobs:
            ScheduledJob.objects.filter(id__in=[j.id for j in jobs]).update(
                status=ScheduledJob.STATUS_ACTIVE, updated_at=now,
            )
    return jobs


def _run(job: ScheduledJob) -> bool:
    job.attempts += 1
    handler = HANDLERS.get(job.name)
    try:
        if handler is None:
            raise LookupError(f'No handler for job {job.name}')
        result = handler(job.payload)
    except Exception as exc:
        job.last_error = f'{exc.__class__.__name__}: {exc}'
        if job.attempts >= settings.PAYMENT_JOB_MAX_ATTEMPTS:
            job.status = ScheduledJob.STATUS_FAILED
            logger.exception('Job %s failed permanently after %s attempts', job.job_id, job.attempts)
        else:
            job.status = ScheduledJob.STATUS_WAITING
            job.run_at = timezone.now() + _retry_delay(job.attempts)
            logger.exception('Job %s failed (attempt %s); retrying at %s', job.job_id, job.attempts, job.run_at.isoformat())
        _finish(job, run_at=job.run_at)
        return False

    job.status = ScheduledJob.STATUS_COMPLETED
    job.last_error = ''
    _finish(job)
    logger.info('Job %s completed: %s', job.job_id, result)
    return True


def _finish(job: ScheduledJob, **extra) -> None:
    # the row may have been cleared or re-armed while the handler ran
    updated = ScheduledJob.objects.filter(id=job.id, status=ScheduledJob.STATUS_ACTIVE).update(
        status=job.status, attempts=job.attempts, last_error=job.last_error,
        updated_at=timezone.now(), **extra,
    )
    if not updated:
        logger.warning('Job %s changed while running; result %s not recorded', job.job_id, job.status)


def run_due_jobs(batch: int = 50) -> int:
    """Run every due job (up to ``batch``); returns how many ran."""
    jobs = _claim_due(batch)
    for job in jobs:
        _run(job)
    return len(jobs)


def rearm_missing() -> int:
    """Schedule expiry for pending payments that have lost their job."""
    armed = set(
        ScheduledJob.objects.filter(name=CANCEL_PAYMENT).filter(
            Q(status=ScheduledJob.STATUS_WAITING)
            | Q(status=ScheduledJob.STATUS_ACTIVE, updated_at__gte=_lease_cutoff())
        ).values_list('job_id', flat=True)
    )
    now = timezone.now()
    count = 0
    pending = PaymentTransaction.objects.filter(
        status=PaymentTransaction.STATUS_PENDING, expired_at__isnull=False,
    ).only('id', 'expired_at')
    for payment in pending:
        if job_id_for(payment.id) in armed:
            continue
        schedule_cancellation(payment.id, delay=max(payment.expired_at - now, timedelta(0)))
        count += 1
    if count:
        logger.warning('Re-armed %s missing expiry jobs', count)
    return count


def get_status() -> Dict[str, int]:
    qs = ScheduledJob.objects.filter(name=CANCEL_PAYMENT)
    counts = {s: 0 for s, _ in ScheduledJob.STATUS_CHOICES}
    for row in qs.values('status').order_by().annotate(n=Count("id")):
        counts[row['status']] = row['n']
    counts['delayed'] = qs.filter(status=ScheduledJob.STATUS_WAITING, run_at__gt=timezone.now()).count()
    return counts


def clear_all() -> int:
    """Drop waiting payment jobs; running and finished ones are kept."""
    deleted, _ = ScheduledJob.objects.filter(
        name=CANCEL_PAYMENT, status=ScheduledJob.STATUS_WAITING,
    ).delete()
    logger.warning('Cleared %s waiting payment jobs', deleted)
    return deleted