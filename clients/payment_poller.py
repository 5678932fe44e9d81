"""Client-side payment reconciliation poller.

Polls ``POST /bookings/<id>/check-payment-smart`` until the payment converges.
At most one timer is armed at any time. A generation counter is bumped on
every start/stop; a tick whose generation no longer matches (checked both
before and after the network call) is discarded.
"""
import logging
import threading
import time
from collections import namedtuple

logger = logging.getLogger(__name__)

IDLE = "IDLE"
POLLING = "POLLING"
STOPPED = "STOPPED"

STATUS_CREATED = 0
STATUS_PROCESSING = 1
STATUS_PAID = 2

RESUMABLE_STATUSES = ("pending", "selected")

PollingConfig = namedtuple(
    "PollingConfig",
    [
        "immediate", "processing_interval", "created_interval", "error_interval",
        "backoff_multiplier", "max_backoff", "max_errors", "max_duration",
    ],
)

DEFAULT_CONFIG = PollingConfig(
    immediate=5.0,
    processing_interval=15.0,
    created_interval=30.0,
    error_interval=60.0,
    backoff_multiplier=1.5,
    max_backoff=120.0,
    max_errors=3,
    max_duration=600.0,
)


class ThreadingScheduler:
    """Runs callbacks on daemon ``threading.Timer`` threads."""

    def call_later(self, delay, fn):
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.start()
        return timer


class SmartPaymentPoller:
    def __init__(self, check, on_success=None, on_error=None, config=DEFAULT_CONFIG,
                 scheduler=None, clock=time.monotonic):
        self._check = check
        self._on_success = on_success
        self._on_error = on_error
        self.config = config
        self._scheduler = scheduler or ThreadingScheduler()
        self._clock = clock

        self._lock = threading.RLock()
        self._generation = 0
        self._handle = None
        self._started_at = None

        self.state = IDLE
        self.errors = 0
        self.checks = 0
        self.last_result = None
        self.outcome = None
        self.error_message = None

    @property
    def is_polling(self):
        return self.state == POLLING

    def start(self):
        with self._lock:
            if self.state == POLLING:
                return False
            self._generation += 1
            self.state = POLLING
            self.errors = 0
            self.outcome = None
            self.error_message = None
            self._started_at = self._clock()
            gen = self._generation
            self._arm(self.config.immediate, gen)
        return True

    def stop(self, reason="manual"):
        with self._lock:
            if self.state != POLLING:
                return False
            self._halt(reason)
        return True

    def resume(self):
        """Restart after a stop, but only if the booking still awaits payment."""
        with self._lock:
            if self.state == POLLING:
                return False
        try:
            result = self._check()
        except Exception as e:
            logger.warning("resume check failed: %s", e)
            return False
        status = ((result or {}).get("booking") or {}).get("status")
        if status not in RESUMABLE_STATUSES:
            return False
        return self.start()

    # ---------- internals ----------
    def _halt(self, reason):
        self._generation += 1
        self.state = STOPPED
        self.outcome = reason
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self, delay, gen):
        # caller holds the lock
        if self.state != POLLING or gen != self._generation:
            return False
        remaining = self.config.max_duration - (self._clock() - self._started_at)
        if remaining <= 0:
            return False
        self._handle = self._scheduler.call_later(min(delay, remaining), lambda: self._tick(gen))
        return True

    def _tick(self, gen):
        with self._lock:
            if gen != self._generation or self.state != POLLING:
                return
            self._handle = None
            if self._clock() - self._started_at >= self.config.max_duration:
                self._halt("timeout")
                notify = ("Payment verification timeout", None)
            else:
                notify = None
                self.checks += 1
        if notify:
            self._fire_error(*notify)
            return

        result, failure = None, None
        try:
            result = self._check()
        except Exception as e:
            failure = e

        with self._lock:
            if gen != self._generation or self.state != POLLING:
                return
            callback = self._handle_result(result, failure, gen)
        if callback:
            callback()

    def _handle_result(self, result, failure, gen):
        """Decide the next step under the lock; returns a deferred callback or None."""
        cfg = self.config
        if failure is not None:
            self.errors += 1
            logger.warning("payment check failed (%s/%s): %s", self.errors, cfg.max_errors, failure)
            if self.errors >= cfg.max_errors:
                self._halt("error")
                return lambda: self._fire_error("Network error during payment verification", None)
            delay = min(cfg.error_interval * cfg.backoff_multiplier ** (self.errors - 1), cfg.max_backoff)
            return self._schedule_or_timeout(delay, gen)

        self.errors = 0
        self.last_result = result = result or {}
        booking = result.get("booking") or {}

        if result.get("isPaid") or booking.get("status") == "approved":
            self._halt("paid")
            return lambda: self._on_success and self._on_success(result)

        error_code = result.get("errorCode") or 0
        if error_code < 0:
            self._halt("error")
            note = result.get("errorNote") or "Payment failed (error %s)" % error_code
            return lambda: self._fire_error(note, result)

        if result.get("paymentStatus") == STATUS_PROCESSING:
            return self._schedule_or_timeout(cfg.processing_interval, gen)
        return self._schedule_or_timeout(cfg.created_interval, gen)

    def _schedule_or_timeout(self, delay, gen):
        if self._arm(delay, gen):
            return None
        self._halt("timeout")
        return lambda: self._fire_error("Payment verification timeout", None)

    def _fire_error(self, message, result):
        self.error_message = message
        if self._on_error:
            self._on_error(message, result)
