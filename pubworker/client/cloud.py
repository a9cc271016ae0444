import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Union
from google.api_core import exceptions as api_exceptions
from google.cloud import pubsub_v1
from google.cloud.pubsub_v1.subscriber.scheduler import ThreadScheduler
from pubworker.core import models
from pubworker.core.errors import AlreadyExistsError, NotFoundError, TransportError
from pubworker.client.consumer import ErrorCallback, StopHandle
from pubworker.client.pubsub import BasePubSub, PubSub
from pubworker.client.transport import ITransport

logger = logging.getLogger(__name__)

DEFAULT_ACK_DEADLINE = 60
EMULATOR_PROJECT = "emulator-project"


def project_from_env() -> str:
    project = os.environ.get("PUBSUB_PROJECT_ID") or os.environ.get("GOOGLE_CLOUD_PROJECT")
    if project:
        return project
    if os.environ.get("PUBSUB_EMULATOR_HOST"):
        return EMULATOR_PROJECT
    raise ValueError(
        "PUBSUB_PROJECT_ID or GOOGLE_CLOUD_PROJECT is required when not using the emulator"
    )


@contextmanager
def _api_errors(action: str):
    try:
        yield
    except api_exceptions.NotFound as e:
        raise NotFoundError(f"{action}: {e.message}", cause=e) from e
    except api_exceptions.AlreadyExists as e:
        raise AlreadyExistsError(f"{action}: {e.message}", cause=e) from e
    except api_exceptions.GoogleAPIError as e:
        raise TransportError(f"{action} failed: {e}", cause=e) from e


def _short_name(path: str) -> str:
    return path.rsplit("/", 1)[-1]


class CloudReceivedMessage:
    """A streaming-pull message, with the same surface as ReceivedMessage."""

    def __init__(self, message: Any):
        self._message = message
        self.message_id: str = message.message_id
        self.data: bytes = message.data
        self.attributes: Dict[str, str] = dict(message.attributes)
        self.publish_time: Optional[float] = (
            message.publish_time.timestamp() if message.publish_time else None
        )
        self.delivery_attempt: int = message.delivery_attempt or 1

    def acknowledge(self):
        self._message.ack()

    def modify_ack_deadline(self, seconds: int):
        self._message.modify_ack_deadline(seconds)

    def reject(self):
        self._message.nack()

    def __repr__(self):
        return f"CloudReceivedMessage(message_id={self.message_id!r})"


class CloudTopic:
    def __init__(self, pubsub: "CloudPubSub", info: models.Topic):
        self._pubsub = pubsub
        self.info = info

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def path(self) -> str:
        return self._pubsub.publisher.topic_path(self._pubsub.project, self.name)

    def publish(self, data: bytes, **attributes: str) -> str:
        with _api_errors(f"Publish to {self.name}"):
            return self._pubsub.publisher.publish(self.path, data, **attributes).result()

    def subscribe(self, name: str, deadline: Optional[int] = None) -> "CloudSubscription":
        subscriber = self._pubsub.subscriber
        with _api_errors(f"Create subscription {name}"):
            created = subscriber.create_subscription(
                request={
                    "name": subscriber.subscription_path(self._pubsub.project, name),
                    "topic": self.path,
                    "ack_deadline_seconds": deadline or DEFAULT_ACK_DEADLINE,
                }
            )
        return CloudSubscription(self._pubsub, _subscription_info(created))


class CloudSubscription:
    def __init__(self, pubsub: "CloudPubSub", info: models.Subscription):
        self._pubsub = pubsub
        self.info = info

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def deadline(self) -> int:
        return self.info.ack_deadline_seconds

    @property
    def path(self) -> str:
        return self._pubsub.subscriber.subscription_path(self._pubsub.project, self.name)

    def listen(
        self,
        callback: Callable[[CloudReceivedMessage], Any],
        streams: int = 1,
        callback_threads: int = 1,
        **options: Any,
    ) -> "CloudSubscriber":
        return CloudSubscriber(
            self,
            callback,
            streams=streams,
            callback_threads=callback_threads,
            **options,
        )


class CloudSubscriber:
    """Streaming pull on Google Cloud Pub/Sub.

    Opens `streams` streaming pulls, each running callbacks on its own pool of
    `callback_threads` threads and capped by flow control at that many
    outstanding messages. `stop()` cancels the streams; the handle's `wait()`
    blocks until the client library has finished the running callbacks.
    """

    def __init__(
        self,
        subscription: CloudSubscription,
        callback: Callable[[CloudReceivedMessage], Any],
        streams: int = 1,
        callback_threads: int = 1,
        flow_control: Optional[Any] = None,
    ):
        if streams < 1 or callback_threads < 1:
            raise ValueError("streams and callback_threads must be at least 1")
        self.subscription = subscription
        self.streams = streams
        self.callback_threads = callback_threads
        self.flow_control = flow_control or pubsub_v1.types.FlowControl(
            max_messages=callback_threads
        )
        self._callback = callback
        self._error_callbacks: List[ErrorCallback] = []
        self._futures: List[Any] = []
        self._started = False
        self._stopped = False

    @property
    def deadline(self) -> int:
        return self.subscription.deadline

    @property
    def started(self) -> bool:
        return self._started

    @property
    def stopped(self) -> bool:
        return self._stopped

    def on_error(self, callback: ErrorCallback):
        self._error_callbacks.append(callback)

    def start(self) -> "CloudSubscriber":
        if self._started:
            return self
        self._started = True
        client = self.subscription._pubsub.subscriber
        for i in range(self.streams):
            scheduler = ThreadScheduler(
                executor=ThreadPoolExecutor(
                    max_workers=self.callback_threads,
                    thread_name_prefix=f"subscriber-callback-{i}",
                )
            )
            future = client.subscribe(
                self.subscription.path,
                callback=self._dispatch,
                flow_control=self.flow_control,
                scheduler=scheduler,
                await_callbacks_on_shutdown=True,
            )
            future.add_done_callback(self._on_stream_done)
            self._futures.append(future)
        logger.debug(
            f"Subscriber started on {self.subscription.path} "
            f"(streams={self.streams}, callback_threads={self.callback_threads})"
        )
        return self

    def stop(self) -> StopHandle:
        self._stopped = True
        for future in self._futures:
            future.cancel()
        return StopHandle(self)

    def _dispatch(self, message: Any):
        try:
            self._callback(CloudReceivedMessage(message))
        except Exception as e:
            self._report(e)

    def _on_stream_done(self, future: Any):
        if self._stopped or future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self._report(error)

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
        drained = True
        for future in self._futures:
            try:
                future.result(timeout=timeout)
            except FuturesTimeoutError:
                drained = False
            except Exception as e:
                # Stream had already failed and was reported then
                logger.debug(f"Stream ended with {type(e).__name__}: {e}")
        return drained


class CloudPubSub(BasePubSub):
    """Google Cloud Pub/Sub backend.

    The project comes from `project`, else PUBSUB_PROJECT_ID or
    GOOGLE_CLOUD_PROJECT. With PUBSUB_EMULATOR_HOST set, the client library
    talks to the emulator instead.
    """

    def __init__(
        self,
        project: Optional[str] = None,
        publisher: Optional[Any] = None,
        subscriber: Optional[Any] = None,
    ):
        self.project = project or project_from_env()
        self.publisher = publisher or pubsub_v1.PublisherClient()
        self.subscriber = subscriber or pubsub_v1.SubscriberClient()

    def close(self):
        self.subscriber.close()

    def topic(self, name: str) -> Optional[CloudTopic]:
        try:
            with _api_errors(f"Get topic {name}"):
                found = self.publisher.get_topic(
                    request={"topic": self.publisher.topic_path(self.project, name)}
                )
        except NotFoundError:
            return None
        return CloudTopic(self, models.Topic(name=_short_name(found.name)))

    def create_topic(self, name: str) -> CloudTopic:
        with _api_errors(f"Create topic {name}"):
            created = self.publisher.create_topic(
                request={"name": self.publisher.topic_path(self.project, name)}
            )
        return CloudTopic(self, models.Topic(name=_short_name(created.name)))

    def subscription(self, name: str) -> Optional[CloudSubscription]:
        try:
            with _api_errors(f"Get subscription {name}"):
                found = self.subscriber.get_subscription(
                    request={
                        "subscription": self.subscriber.subscription_path(self.project, name)
                    }
                )
        except NotFoundError:
            return None
        return CloudSubscription(self, _subscription_info(found))


def _subscription_info(subscription: Any) -> models.Subscription:
    return models.Subscription(
        name=_short_name(subscription.name),
        topic=_short_name(subscription.topic),
        ack_deadline_seconds=subscription.ack_deadline_seconds or DEFAULT_ACK_DEADLINE,
    )


def pubsub_for(pubsub: Union[BasePubSub, ITransport, str, None]) -> BasePubSub:
    """Google Cloud Pub/Sub unless a bundled-broker URL or transport is given."""
    if isinstance(pubsub, BasePubSub):
        return pubsub
    if pubsub is None:
        return CloudPubSub()
    return PubSub(pubsub)
