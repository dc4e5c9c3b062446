import logging
import math
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TERMINAL_PAYMENT_STATUSES = {"SUCCESS", "FAILED", "CANCELLED"}


def parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class HoldCountdown:
    """Seconds left on a seat hold, ticking once a second in a daemon thread"""

    def __init__(self, expires_at, clock: Optional[Callable[[], datetime]] = None):
        self.expires_at = parse_timestamp(expires_at)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def remaining(self) -> int:
        seconds = (self.expires_at - self._clock()).total_seconds()
        return max(0, math.ceil(seconds))

    @property
    def expired(self) -> bool:
        return self.remaining() == 0

    def format(self) -> str:
        minutes, seconds = divmod(self.remaining(), 60)
        return f"{minutes:02d}:{seconds:02d}"

    def run(self, on_tick: Callable[[int], None], on_expire: Optional[Callable[[], None]] = None):
        """Call on_tick every second until expiry, then on_expire once"""
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, args=(on_tick, on_expire), daemon=True)
        self._thread.start()

    def _loop(self, on_tick, on_expire):
        while not self._stop_event.is_set():
            remaining = self.remaining()
            on_tick(remaining)
            if remaining == 0:
                if on_expire:
                    on_expire()
                return
            self._stop_event.wait(1.0)

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None


class PaymentStatusPoller:
    """Polls a top-up status until it is terminal or the timeout passes.

    fetch_status returns the status payload of /payment/status; its "status"
    field decides when to stop. Fetch errors are logged and polling continues.
    """

    def __init__(
        self,
        fetch_status: Callable[[], dict],
        interval: float = 3.0,
        timeout: float = 120.0,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.fetch_status = fetch_status
        self.interval = interval
        self.timeout = timeout
        self._sleep = sleep
        self._monotonic = monotonic
        self.last_result: Optional[dict] = None
        self.timed_out = False

    def poll(self, on_update: Optional[Callable[[dict], None]] = None) -> Optional[dict]:
        """Return the terminal payload, or the last payload seen on timeout"""
        deadline = self._monotonic() + self.timeout
        self.timed_out = False
        while True:
            try:
                result = self.fetch_status()
            except Exception:
                logger.warning("payment status check failed", exc_info=True)
            else:
                self.last_result = result
                if on_update:
                    on_update(result)
                if (result or {}).get("status") in TERMINAL_PAYMENT_STATUSES:
                    return result

            if self._monotonic() + self.interval > deadline:
                self.timed_out = True
                return self.last_result
            self._sleep(self.interval)
