import logging
import signal
import time

from django.conf import settings
from django.core.management.base import BaseCommand

from clinic.services import scheduler

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Run due payment-expiry jobs; re-arm pending payments that have no job."

    def add_arguments(self, parser):
        parser.add_argument("--once", action="store_true", help="Run a single tick and exit.")
        parser.add_argument("--batch", type=int, default=50, help="Maximum jobs claimed per tick.")

    def handle(self, *args, **opts):
        self._stop = False
        once = opts["once"]
        batch = opts["batch"]
        poll = settings.PAYMENT_WORKER_POLL_SECONDS

        if not once:
            signal.signal(signal.SIGTERM, self._request_stop)
            signal.signal(signal.SIGINT, self._request_stop)
            logger.info("Payment worker started (batch=%s, poll=%ss)", batch, poll)

        while True:
            rearmed = scheduler.rearm_missing()
            ran = scheduler.run_due_jobs(batch)
            if once:
                self.stdout.write(self.style.SUCCESS(f"Ran {ran} jobs, re-armed {rearmed}"))
                return
            if self._stop:
                break
            if ran < batch:
                time.sleep(poll)

        logger.info("Payment worker stopped")

    def _request_stop(self, signum, frame):
        logger.info("Signal %s received; stopping after this tick", signum)
        self._stop = True
