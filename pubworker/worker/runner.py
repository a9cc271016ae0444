import logging
import signal
import threading
import time
from typing import Any, Dict, Optional, Union
from pubworker.core.interfaces import IJobRunner
from pubworker.core.models import WorkerState
from pubworker.client.consumer import ReceivedMessage, Subscriber
from pubworker.client.cloud import pubsub_for
from pubworker.client.pubsub import BasePubSub
from pubworker.client.transport import ITransport
from .dedup import DeduplicationCache
from .executor import JobExecutor
from .jobs import JobRegistry
from .processor import MessageProcessor

SHUTDOWN_SIGNALS = ("SIGQUIT", "SIGTERM", "SIGINT")


class Worker:
    def __init__(
        self,
        queue: str = "default",
        pubsub: Union[BasePubSub, ITransport, str, None] = None,
        logger: Optional[logging.Logger] = None,
        runner: Optional[IJobRunner] = None,
        streams: int = 1,
        callback_threads: int = 1,
        poll_interval: float = 1.0,
        subscriber_options: Optional[Dict[str, Any]] = None,
    ):
        self.queue_name = queue
        self.pubsub = pubsub_for(pubsub)
        self.logger = logger or logging.getLogger(__name__)
        self.runner = runner if runner is not None else JobRegistry()
        self.streams = streams
        self.callback_threads = callback_threads
        self.poll_interval = poll_interval
        self.subscriber_options = subscriber_options or {}
        self.dedup = DeduplicationCache()
        self.state = WorkerState.INITIALIZING
        self.processor: Optional[MessageProcessor] = None
        self._quit = False

    def run(self):
        """Consumes the queue until a shutdown signal arrives, then drains."""
        subscriber = self.pubsub.subscription_for(self.queue_name).listen(
            self._on_message,
            streams=self.streams,
            callback_threads=self.callback_threads,
            **self.subscriber_options,
        )
        subscriber.on_error(self._on_error)

        self.processor = MessageProcessor(
            JobExecutor(self.runner),
            subscriber.deadline,
            dedup=self.dedup,
            logger=self.logger,
        )

        previous_handlers = self._trap_signals()
        try:
            self._serve(subscriber)
        finally:
            self._restore_signals(previous_handlers)

    def ensure_subscription(self):
        self.pubsub.subscription_for(self.queue_name)

        return None

    def request_shutdown(self):
        self._quit = True

    @property
    def shutdown_requested(self) -> bool:
        return self._quit

    def _serve(self, subscriber: Subscriber):
        subscriber.start()
        self.state = WorkerState.RUNNING
        self.logger.info(
            f"Worker listening on {subscriber.subscription.name} "
            f"(deadline={subscriber.deadline}s)"
        )

        while not self._quit:
            time.sleep(self.poll_interval)

        self.state = WorkerState.DRAINING
        self.logger.info("Shutting down...")
        subscriber.stop().wait()
        self.state = WorkerState.STOPPED
        self.logger.info("Shut down.")

    def _on_message(self, message: ReceivedMessage):
        self.logger.info(f"Message({message.message_id}) was received.")
        self.processor.process(message)

    def _on_error(self, error: BaseException):
        self.logger.error(f"{type(error).__name__}: {error}", exc_info=error)

    def _handle_signal(self, signum, frame):
        # Runs in signal context: flag write only
        self._quit = True

    def _trap_signals(self) -> Dict[int, Any]:
        previous: Dict[int, Any] = {}
        if threading.current_thread() is not threading.main_thread():
            self.logger.debug("Not on the main thread, signal handlers not installed")
            return previous
        for name in SHUTDOWN_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            previous[signum] = signal.signal(signum, self._handle_signal)
        return previous

    def _restore_signals(self, previous: Dict[int, Any]):
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

