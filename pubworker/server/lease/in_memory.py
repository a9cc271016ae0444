import threading
import time
import uuid
from typing import Dict, List, Optional, Tuple
from pubworker.core.interfaces import ILeaseManager
from pubworker.core.models import Lease, Message


class InMemoryLeaseManager(ILeaseManager):
    def __init__(self):
        # (subscription, ack_id) -> Lease
        self._leases: Dict[Tuple[str, str], Lease] = {}
        self._lock = threading.Lock()

    def acquire(
        self,
        subscription: str,
        message: Message,
        duration: float,
        delivery_attempt: int = 1,
    ) -> Lease:
        lease = Lease(
            ack_id=uuid.uuid4().hex,
            subscription=subscription,
            message=message,
            expiry=time.time() + duration,
            delivery_attempt=delivery_attempt,
        )
        with self._lock:
            self._leases[(subscription, lease.ack_id)] = lease
        return lease

    def extend(self, subscription: str, ack_id: str, duration: float) -> bool:
        with self._lock:
            key = (subscription, ack_id)
            lease = self._leases.get(key)
            now = time.time()
            if lease is None:
                return False
            if lease.expiry < now:
                # Lazy cleanup; the reaper hands it back for redelivery
                return False
            self._leases[key] = lease.model_copy(update={"expiry": now + duration})
            return True

    def release(self, subscription: str, ack_id: str) -> Optional[Lease]:
        with self._lock:
            return self._leases.pop((subscription, ack_id), None)

    def get_lease(self, subscription: str, ack_id: str) -> Optional[Lease]:
        with self._lock:
            return self._leases.get((subscription, ack_id))

    def reap_expired(self) -> List[Lease]:
        with self._lock:
            now = time.time()
            expired_keys = [
                key for key, lease in self._leases.items() if lease.expiry < now
            ]
            return [self._leases.pop(key) for key in expired_keys]
