import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set
from pubworker.core.protocol import Command
from pubworker.client.transport import ITransport

if TYPE_CHECKING:
    from pubworker.client.pubsub import Subscription

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[BaseException], None]


class ReceivedMessage:
    def __init__(self, transport: ITransport, subscription: str, received: Dict[str, Any]):
        self._transport = transport
        self.subscription = subscription
        self.ack_id: str = received["ack_id"]
        self.message_id: str = received["message_id"]
        self.data: bytes = received["data"]
        self.attributes: Dict[str, str] = received.get("attributes") or {}
        self.publish_time: Optional[float] = received.get("publish_time")
        self.delivery_attempt: int = received.get("delivery_attempt", 1)

    def acknowledge(self):
        self._transport.request(
            Command.ACKNOWLEDGE,
            {"subscription": self.subscription, "ack_ids": [self.ack_id]},
        )

    def modify_ack_deadline(self, seconds: int):
        self._transport.request(
            Command.MODIFY_ACK_DEADLINE,
            {
                "subscription": self.subscription,
                "ack_ids": [self.ack_id],
                "ack_deadline_seconds": seconds,
            },
        )

    def reject(self):
        """Hands the message back to the broker for immediate redelivery."""
        self.modify_ack_deadline(0)

    def __repr__(self):
        return f"ReceivedMessage(message_id={self.message_id!r}, subscription={self.subscription!r})"


class Subscriber:
    """Streaming pull consumer.

    `streams` threads pull from the subscription and hand every message to a
    pool of `callback_threads` workers. A stream never holds more messages
    than there are idle callback workers, so nothing sits pulled but unserved.
    Errors raised by callbacks or by pulls are passed to the error callbacks.
    """

    def __init__(
        self,
        subscription: "Subscription",
        callback: Callable[[ReceivedMessage], Any],
        streams: int = 1,
        callback_threads: int = 1,
        poll_interval: float = 0.1,
        error_backoff: float = 1.0,
    ):
        if streams < 1 or callback_threads < 1:
            raise ValueError("streams and callback_threads must be at least 1")
        self.subscription = subscription
        self.streams = streams
        self.callback_threads = callback_threads
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self._callback = callback
        self._error_callbacks: List[ErrorCallback] = []
        self._slots = threading.BoundedSemaphore(callback_threads)
        self._stopped = threading.Event()
        self._executor = ThreadPoolExecutor(
            max_workers=callback_threads, thread_name_prefix="subscriber-callback"
        )
        self._in_flight: Set[Future] = set()
        self._in_flight_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._started = False

    @property
    def deadline(self) -> int:
        return self.subscription.deadline

    @property
    def started(self) -> bool:
        return self._started

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def on_error(self, callback: ErrorCallback):
        self._error_callbacks.append(callback)

    def start(self) -> "Subscriber":
        if self._started:
            return self
        self._started = True
        for i in range(self.streams):
            thread = threading.Thread(
                target=self._stream_loop, name=f"subscriber-stream-{i}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        logger.debug(
            f"Subscriber started on {self.subscription.name} "
            f"(streams={self.streams}, callback_threads={self.callback_threads})"
        )
        return self

    def stop(self) -> "StopHandle":
        """Stops pulling. Use the returned handle to wait for running callbacks."""
        self._stopped.set()
        return StopHandle(self)

    def _stream_loop(self):
        while not self._stopped.is_set():
            if not self._slots.acquire(timeout=self.poll_interval):
                continue
            free = 1
            while free < self.callback_threads and self._slots.acquire(blocking=False):
                free += 1

            if self._stopped.is_set():
                self._release(free)
                break

            try:
                messages = self.subscription.pull(max_messages=free)
            except Exception as e:
                self._release(free)
                self._report(e)
                self._stopped.wait(self.error_backoff)
                continue

            self._release(free - len(messages))
            for message in messages:
                self._submit(message)

            if not messages:
                self._stopped.wait(self.poll_interval)

    def _submit(self, message: ReceivedMessage):
        future = self._executor.submit(self._dispatch, message)
        with self._in_flight_lock:
            self._in_flight.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future):
        with self._in_flight_lock:
            self._in_flight.discard(future)

    def _dispatch(self, message: ReceivedMessage):
        try:
            self._callback(message)
        except Exception as e:
            self._report(e)
        finally:
            self._slots.release()

    def _release(self, count: int):
        for _ in range(count):
            self._slots.release()

    def _report(self, error: BaseException):
        if not self._error_callbacks:
            logger.error("Unhandled subscriber error", exc_info=error)
            return
        for callback in self._error_callbacks:
            try:
                callback(error)
            except Exception:
                logger.exception("Error callback failed")

    def _drain(self, timeout: Optional[float]) -> bool:
        for thread in self._threads:
            thread.join(timeout)
        with self._in_flight_lock:
            pending = list(self._in_flight)
        _, not_done = wait_futures(pending, timeout=timeout)
        self._executor.shutdown(wait=not not_done)
        return not not_done and not any(t.is_alive() for t in self._threads)


class StopHandle:
    def __init__(self, subscriber: Subscriber):
        self._subscriber = subscriber

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until every dispatched callback has returned.

        Returns False if `timeout` elapsed first.
        """
        return self._subscriber._drain(timeout)
