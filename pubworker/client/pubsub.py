import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Union
from pubworker.core import models
from pubworker.core.errors import AlreadyExistsError, NotFoundError
from pubworker.core.protocol import Command, subscription_name_for, topic_name_for
from pubworker.client.consumer import ReceivedMessage, Subscriber
from pubworker.client.transport import HttpTransport, ITransport

logger = logging.getLogger(__name__)


class Topic:
    def __init__(self, transport: ITransport, info: models.Topic):
        self._transport = transport
        self.info = info

    @property
    def name(self) -> str:
        return self.info.name

    def publish(self, data: bytes, **attributes: str) -> str:
        response = self._transport.request(
            Command.PUBLISH,
            {"topic": self.name, "data": data, "attributes": attributes},
        )
        return response["message_id"]

    def subscribe(self, name: str, deadline: Optional[int] = None) -> "Subscription":
        response = self._transport.request(
            Command.CREATE_SUBSCRIPTION,
            {"subscription": name, "topic": self.name, "ack_deadline_seconds": deadline},
        )
        return Subscription(self._transport, models.Subscription(**response))


class Subscription:
    def __init__(self, transport: ITransport, info: models.Subscription):
        self._transport = transport
        self.info = info

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def deadline(self) -> int:
        return self.info.ack_deadline_seconds

    def pull(self, max_messages: int = 1) -> List[ReceivedMessage]:
        response = self._transport.request(
            Command.PULL, {"subscription": self.name, "max_messages": max_messages}
        )
        return [
            ReceivedMessage(self._transport, self.name, received)
            for received in response["received_messages"]
        ]

    def listen(
        self,
        callback: Callable[[ReceivedMessage], Any],
        streams: int = 1,
        callback_threads: int = 1,
        **options: Any,
    ) -> Subscriber:
        return Subscriber(
            self,
            callback,
            streams=streams,
            callback_threads=callback_threads,
            **options,
        )


class BasePubSub(ABC):
    """Queue-level view of a pub/sub backend: one topic and one worker
    subscription per queue, created on first use."""

    @abstractmethod
    def topic(self, name: str):
        pass

    @abstractmethod
    def create_topic(self, name: str):
        pass

    @abstractmethod
    def subscription(self, name: str):
        pass

    @abstractmethod
    def close(self):
        pass

    def topic_for(self, queue_name: str):
        name = topic_name_for(queue_name)
        topic = self.topic(name)
        if topic is not None:
            return topic
        try:
            return self.create_topic(name)
        except AlreadyExistsError:
            # Someone else created it in between
            return self.topic(name)

    def subscription_for(self, queue_name: str, deadline: Optional[int] = None):
        """Returns the worker subscription of a queue, creating topic and subscription if needed."""
        name = subscription_name_for(queue_name)
        subscription = self.subscription(name)
        if subscription is not None:
            return subscription
        try:
            subscription = self.topic_for(queue_name).subscribe(name, deadline=deadline)
        except AlreadyExistsError:
            return self.subscription(name)
        logger.info(f"Created subscription {name}")
        return subscription


class PubSub(BasePubSub):
    """Client for the bundled broker, over HTTP or in-process."""

    def __init__(self, transport_or_url: Union[str, ITransport], timeout: float = 60.0):
        if isinstance(transport_or_url, str):
            self.transport: ITransport = HttpTransport(transport_or_url, timeout=timeout)
        else:
            self.transport = transport_or_url

    def close(self):
        self.transport.close()

    def topic(self, name: str) -> Optional[Topic]:
        try:
            response = self.transport.request(Command.GET_TOPIC, {"topic": name})
        except NotFoundError:
            return None
        return Topic(self.transport, models.Topic(**response))

    def create_topic(self, name: str) -> Topic:
        response = self.transport.request(Command.CREATE_TOPIC, {"topic": name})
        return Topic(self.transport, models.Topic(**response))

    def subscription(self, name: str) -> Optional[Subscription]:
        try:
            response = self.transport.request(
                Command.GET_SUBSCRIPTION, {"subscription": name}
            )
        except NotFoundError:
            return None
        return Subscription(self.transport, models.Subscription(**response))
