import logging
import math
import threading
from typing import Optional
from pubworker.core.errors import LeaseRenewalError
from pubworker.client.consumer import ReceivedMessage

logger = logging.getLogger(__name__)

RENEWAL_TIMEOUT = 5.0
MIN_REMAINING = 5


def extension_interval(deadline: int) -> int:
    """Seconds between renewals of a `deadline`-second lease.

    Renews when only 10% of the deadline or 5 seconds are left, whichever
    comes first. Never less than one second.
    """
    ninety_percent = math.floor(deadline * 0.9 + 0.5)
    return max(1, min(ninety_percent, deadline - MIN_REMAINING))


class LeaseExtender:
    """Keeps one message's ack deadline alive while its job runs.

    Renews right away, then every `interval` seconds, on a thread of its own
    so that a busy job never delays a renewal. Each renewal call runs on a
    short-lived daemon thread and is abandoned after `timeout` seconds, so a
    hung call only ever holds up this message.
    """

    def __init__(
        self,
        message: ReceivedMessage,
        deadline: int,
        timeout: float = RENEWAL_TIMEOUT,
    ):
        self.message = message
        self.deadline = deadline
        self.interval = extension_interval(deadline)
        self.timeout = timeout
        self.renewal_count = 0
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def start_for(
        cls, message: ReceivedMessage, deadline: int, **options
    ) -> "LeaseExtender":
        return cls(message, deadline, **options).start()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "LeaseExtender":
        if self._thread is not None:
            return self
        self._thread = threading.Thread(
            target=self._run,
            name=f"lease-extender-{self.message.message_id}",
            daemon=True,
        )
        self._thread.start()
        return self

    def stop(self):
        """Cancels future renewals. Does not wait for one already running."""
        with self._lock:
            self._stopped.set()

    def renew(self):
        call = _RenewalCall(self.message, self.deadline)
        with self._lock:
            if self._stopped.is_set():
                return
            call.start()

        if not call.wait(self.timeout):
            raise LeaseRenewalError(
                self.message.message_id, f"timed out after {self.timeout}s"
            )
        if call.error is not None:
            raise LeaseRenewalError(self.message.message_id, str(call.error)) from call.error

        self.renewal_count += 1
        logger.debug(
            f"Message({self.message.message_id}) lease extended by {self.deadline}s"
        )

    def _run(self):
        while not self._stopped.is_set():
            try:
                self.renew()
            except LeaseRenewalError as e:
                logger.warning(str(e))
            if self._stopped.wait(self.interval):
                break


class _RenewalCall:
    """One modify_ack_deadline call on a throwaway daemon thread."""

    def __init__(self, message: ReceivedMessage, deadline: int):
        self.error: Optional[Exception] = None
        self._done = threading.Event()
        self._thread = threading.Thread(
            target=self._call,
            args=(message, deadline),
            name=f"lease-renewal-{message.message_id}",
            daemon=True,
        )

    def start(self):
        self._thread.start()

    def wait(self, timeout: float) -> bool:
        return self._done.wait(timeout)

    def _call(self, message: ReceivedMessage, deadline: int):
        try:
            message.modify_ack_deadline(deadline)
        except Exception as e:
            self.error = e
        finally:
            self._done.set()
