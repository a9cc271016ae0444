import logging
import threading
from typing import Dict, List, Optional, Tuple
from pubworker.core.errors import NotFoundError
from pubworker.core.interfaces import IMessageStorage, ILeaseManager
from pubworker.core.models import Lease, Subscription, Topic
from .lease.in_memory import InMemoryLeaseManager
from .storage.in_memory import InMemoryStorage

logger = logging.getLogger(__name__)

DEFAULT_ACK_DEADLINE = 60
MAX_ACK_DEADLINE = 600


class Orchestrator:
    def __init__(
        self,
        storage: Optional[IMessageStorage] = None,
        lease_manager: Optional[ILeaseManager] = None,
        default_ack_deadline: int = DEFAULT_ACK_DEADLINE,
    ):
        self.storage = storage or InMemoryStorage()
        self.lease_manager = lease_manager or InMemoryLeaseManager()
        self.default_ack_deadline = default_ack_deadline
        # (subscription, message_id) -> deliveries so far
        self._attempts: Dict[Tuple[str, str], int] = {}
        self._attempts_lock = threading.Lock()
        self._reaper: Optional[threading.Thread] = None
        self._reaper_stop = threading.Event()

    def create_topic(self, name: str) -> Topic:
        topic = self.storage.create_topic(name)
        logger.info(f"Topic {name} created")
        return topic

    def get_topic(self, name: str) -> Topic:
        topic = self.storage.get_topic(name)
        if topic is None:
            raise NotFoundError(f"Topic {name} not found")
        return topic

    def create_subscription(
        self, name: str, topic: str, ack_deadline_seconds: Optional[int] = None
    ) -> Subscription:
        deadline = ack_deadline_seconds or self.default_ack_deadline
        _check_deadline(deadline)
        subscription = self.storage.create_subscription(name, topic, deadline)
        logger.info(f"Subscription {name} created on {topic} (deadline={deadline}s)")
        return subscription

    def get_subscription(self, name: str) -> Subscription:
        subscription = self.storage.get_subscription(name)
        if subscription is None:
            raise NotFoundError(f"Subscription {name} not found")
        return subscription

    def publish(
        self, topic: str, data: bytes, attributes: Optional[Dict[str, str]] = None
    ) -> str:
        message = self.storage.append(topic, data, attributes)
        return message.message_id

    def pull(self, subscription: str, max_messages: int = 1) -> List[Lease]:
        """Leases up to max_messages messages for the subscription's ack deadline."""
        deadline = self.get_subscription(subscription).ack_deadline_seconds
        # Lazy reap
        self.reap_expired()

        leases = []
        for message in self.storage.take(subscription, max_messages):
            with self._attempts_lock:
                key = (subscription, message.message_id)
                attempt = self._attempts.get(key, 0) + 1
                self._attempts[key] = attempt
            leases.append(
                self.lease_manager.acquire(subscription, message, deadline, attempt)
            )
        return leases

    def acknowledge(self, subscription: str, ack_ids: List[str]):
        self.get_subscription(subscription)
        for ack_id in ack_ids:
            lease = self.lease_manager.release(subscription, ack_id)
            if lease is None:
                # Expired or already settled; the message may be redelivered
                logger.debug(f"Unknown ack id {ack_id} on {subscription}")
                continue
            with self._attempts_lock:
                self._attempts.pop((subscription, lease.message.message_id), None)

    def modify_ack_deadline(self, subscription: str, ack_ids: List[str], seconds: int):
        """Extends leases by `seconds`; zero hands the messages back immediately."""
        self.get_subscription(subscription)
        _check_deadline(seconds, allow_zero=True)
        for ack_id in ack_ids:
            if seconds == 0:
                lease = self.lease_manager.release(subscription, ack_id)
                if lease is not None:
                    self.storage.put_back(subscription, [lease.message])
            else:
                self.lease_manager.extend(subscription, ack_id, seconds)

    def reap_expired(self) -> int:
        expired = self.lease_manager.reap_expired()
        for lease in expired:
            self.storage.put_back(lease.subscription, [lease.message])
        if expired:
            logger.debug(f"Returned {len(expired)} expired leases for redelivery")
        return len(expired)

    def start_reaper(self, interval: float = 30.0):
        if self._reaper is None:
            self._reaper_stop.clear()
            self._reaper = threading.Thread(
                target=self._reap_loop, args=(interval,), name="lease-reaper", daemon=True
            )
            self._reaper.start()

    def stop_reaper(self):
        self._reaper_stop.set()
        if self._reaper is not None:
            self._reaper.join(timeout=5)
            self._reaper = None

    def _reap_loop(self, interval: float):
        while not self._reaper_stop.wait(interval):
            try:
                self.reap_expired()
            except Exception:
                logger.exception("Lease reaper failed")


def _check_deadline(seconds: int, allow_zero: bool = False):
    lower = 0 if allow_zero else 1
    if not lower <= seconds <= MAX_ACK_DEADLINE:
        raise ValueError(
            f"Ack deadline must be between {lower} and {MAX_ACK_DEADLINE} seconds, got {seconds}"
        )
