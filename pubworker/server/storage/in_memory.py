import itertools
import threading
import time
from collections import deque
from typing import Deque, Dict, List, Optional
from pubworker.core.errors import AlreadyExistsError, NotFoundError
from pubworker.core.interfaces import IMessageStorage
from pubworker.core.models import Message, Subscription, Topic


class InMemoryStorage(IMessageStorage):
    def __init__(self):
        self._topics: Dict[str, Topic] = {}
        # topic -> subscription names
        self._fanout: Dict[str, List[str]] = {}
        self._subscriptions: Dict[str, Subscription] = {}
        # subscription -> backlog
        self._backlogs: Dict[str, Deque[Message]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create_topic(self, name: str) -> Topic:
        with self._lock:
            if name in self._topics:
                raise AlreadyExistsError(f"Topic {name} already exists")
            topic = Topic(name=name)
            self._topics[name] = topic
            self._fanout[name] = []
            return topic

    def get_topic(self, name: str) -> Optional[Topic]:
        with self._lock:
            return self._topics.get(name)

    def create_subscription(
        self, name: str, topic: str, ack_deadline_seconds: int
    ) -> Subscription:
        with self._lock:
            if topic not in self._topics:
                raise NotFoundError(f"Topic {topic} not found")
            if name in self._subscriptions:
                raise AlreadyExistsError(f"Subscription {name} already exists")
            subscription = Subscription(
                name=name, topic=topic, ack_deadline_seconds=ack_deadline_seconds
            )
            self._subscriptions[name] = subscription
            self._backlogs[name] = deque()
            self._fanout[topic].append(name)
            return subscription

    def get_subscription(self, name: str) -> Optional[Subscription]:
        with self._lock:
            return self._subscriptions.get(name)

    def append(
        self, topic: str, data: bytes, attributes: Optional[dict] = None
    ) -> Message:
        with self._lock:
            if topic not in self._topics:
                raise NotFoundError(f"Topic {topic} not found")

            message = Message(
                message_id=str(next(self._ids)),
                topic=topic,
                data=data,
                attributes=attributes or {},
                publish_time=time.time(),
            )
            # Messages published before a subscription exists are not retained for it
            for name in self._fanout[topic]:
                self._backlogs[name].append(message)
            return message

    def take(self, subscription: str, limit: int) -> List[Message]:
        with self._lock:
            backlog = self._backlog(subscription)
            taken = []
            while backlog and len(taken) < limit:
                taken.append(backlog.popleft())
            return taken

    def put_back(self, subscription: str, messages: List[Message]):
        with self._lock:
            backlog = self._backlog(subscription)
            backlog.extendleft(reversed(messages))

    def backlog_size(self, subscription: str) -> int:
        with self._lock:
            return len(self._backlog(subscription))

    def _backlog(self, subscription: str) -> Deque[Message]:
        backlog = self._backlogs.get(subscription)
        if backlog is None:
            raise NotFoundError(f"Subscription {subscription} not found")
        return backlog
