import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union
from pubworker.core.models import JobDescription
from pubworker.core.protocol import encode_job
from pubworker.client.cloud import pubsub_for
from pubworker.client.pubsub import BasePubSub
from pubworker.client.transport import ITransport

logger = logging.getLogger(__name__)


class JobPublisher:
    def __init__(self, pubsub_or_url: Union[str, ITransport, BasePubSub, None] = None):
        self.pubsub = pubsub_for(pubsub_or_url)

    def close(self):
        self.pubsub.close()

    def enqueue(
        self,
        job_class: Union[str, Callable[..., Any]],
        *args: Any,
        queue: str = "default",
        priority: Optional[int] = None,
        **kwargs: Any,
    ) -> JobDescription:
        """Publishes a job to the queue's topic and returns its description."""
        name = job_class if isinstance(job_class, str) else _job_name(job_class)
        job = JobDescription(
            job_class=name,
            queue_name=queue,
            priority=priority,
            arguments=list(args),
            keyword_arguments=kwargs,
            enqueued_at=datetime.now(timezone.utc),
        )
        message_id = self.pubsub.topic_for(queue).publish(encode_job(job))
        job.provider_job_id = message_id
        logger.debug(f"Enqueued {name} as Message({message_id}) on {queue}")
        return job


def _job_name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "job_name", None) or f"{fn.__module__}.{fn.__qualname__}"
