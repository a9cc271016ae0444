from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from .models import JobDescription, Lease, Message, Subscription, Topic


class IMessageStorage(ABC):
    @abstractmethod
    def create_topic(self, name: str) -> Topic:
        """Creates a topic, raising AlreadyExistsError if it is present."""
        pass

    @abstractmethod
    def get_topic(self, name: str) -> Optional[Topic]:
        pass

    @abstractmethod
    def create_subscription(
        self, name: str, topic: str, ack_deadline_seconds: int
    ) -> Subscription:
        pass

    @abstractmethod
    def get_subscription(self, name: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    def append(
        self, topic: str, data: bytes, attributes: Optional[Dict[str, str]] = None
    ) -> Message:
        """Stores a message and fans it out to every subscription of the topic."""
        pass

    @abstractmethod
    def take(self, subscription: str, limit: int) -> List[Message]:
        """Removes up to `limit` messages from the head of a subscription backlog."""
        pass

    @abstractmethod
    def put_back(self, subscription: str, messages: List[Message]):
        """Returns messages to the head of a subscription backlog for redelivery."""
        pass


class ILeaseManager(ABC):
    @abstractmethod
    def acquire(
        self,
        subscription: str,
        message: Message,
        duration: float,
        delivery_attempt: int = 1,
    ) -> Lease:
        pass

    @abstractmethod
    def extend(self, subscription: str, ack_id: str, duration: float) -> bool:
        """Pushes a live lease's expiry to now + duration. False if it is gone."""
        pass

    @abstractmethod
    def release(self, subscription: str, ack_id: str) -> Optional[Lease]:
        pass

    @abstractmethod
    def reap_expired(self) -> List[Lease]:
        """Removes and returns every lease whose expiry has passed."""
        pass


class IJobRunner(ABC):
    @abstractmethod
    def execute(self, job: JobDescription) -> None:
        """Performs the job synchronously. Raises on failure."""
        pass
