import logging
import threading
from typing import Optional, Set
from pubworker.core.models import ExecutionResult, Outcome
from pubworker.client.consumer import ReceivedMessage
from .dedup import DeduplicationCache
from .executor import JobExecutor
from .lease import RENEWAL_TIMEOUT, LeaseExtender


class MessageProcessor:
    """Runs the job carried by each delivered message, at most once per id.

    A message is skipped when its id was handled recently or is being handled
    right now. Otherwise its lease is kept alive while the job runs; a job
    that returns or raises gets the message acknowledged and its id recorded,
    while an attempt torn down by KeyboardInterrupt/SystemExit gets the message
    rejected for redelivery. Errors from the job are re-raised afterwards.
    """

    def __init__(
        self,
        executor: JobExecutor,
        deadline: int,
        dedup: Optional[DeduplicationCache] = None,
        logger: Optional[logging.Logger] = None,
        renewal_timeout: float = RENEWAL_TIMEOUT,
    ):
        self.executor = executor
        self.deadline = deadline
        self.dedup = dedup if dedup is not None else DeduplicationCache()
        self.logger = logger or logging.getLogger(__name__)
        self.renewal_timeout = renewal_timeout
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

    def __call__(self, message: ReceivedMessage) -> Optional[Outcome]:
        return self.process(message)

    def process(self, message: ReceivedMessage) -> Optional[Outcome]:
        """Returns the outcome, or None when the message was a duplicate."""
        message_id = message.message_id
        if not self._claim(message_id):
            self.logger.debug(f"Message({message_id}) is a duplicate, skipped.")
            return None

        try:
            extender = LeaseExtender.start_for(
                message,
                self.deadline,
                timeout=self.renewal_timeout,
            )
            try:
                result = self._execute(message)
            finally:
                extender.stop()
            self._settle(message, result)
        finally:
            self._release(message_id)

        if result.error is not None:
            raise result.error
        return result.outcome

    def _execute(self, message: ReceivedMessage) -> ExecutionResult:
        try:
            self.executor.execute(message.data)
        except Exception as e:
            return ExecutionResult(outcome=Outcome.FAILED, error=e)
        except BaseException as e:
            # Interpreter teardown reached us mid-job
            return ExecutionResult(outcome=Outcome.ABANDONED, error=e)
        return ExecutionResult(outcome=Outcome.SUCCEEDED)

    def _settle(self, message: ReceivedMessage, result: ExecutionResult):
        message_id = message.message_id
        if result.completed:
            message.acknowledge()
            self.logger.info(f"Message({message_id}) was acknowledged.")
            self.dedup.record(message_id)
        else:
            message.reject()
            self.logger.warning(f"Message({message_id}) was rejected.")

    def _claim(self, message_id: str) -> bool:
        with self._lock:
            if message_id in self._in_flight or message_id in self.dedup:
                return False
            self._in_flight.add(message_id)
            return True

    def _release(self, message_id: str):
        with self._lock:
            self._in_flight.discard(message_id)
