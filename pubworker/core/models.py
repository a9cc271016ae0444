import uuid
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class Topic(BaseModel):
    name: str


class Subscription(BaseModel):
    name: str
    topic: str
    ack_deadline_seconds: int = 60


class Message(BaseModel):
    message_id: str
    topic: str
    data: bytes
    attributes: Dict[str, str] = Field(default_factory=dict)
    publish_time: float  # Unix timestamp


class Lease(BaseModel):
    ack_id: str
    subscription: str
    message: Message
    expiry: float  # Unix timestamp
    delivery_attempt: int = 1


class JobDescription(BaseModel):
    job_class: str
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    provider_job_id: Optional[str] = None
    queue_name: str = "default"
    priority: Optional[int] = None
    arguments: List[Any] = Field(default_factory=list)
    keyword_arguments: Dict[str, Any] = Field(default_factory=dict)
    executions: int = 0
    enqueued_at: Optional[datetime] = None


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"


class ExecutionResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    outcome: Outcome
    error: Optional[BaseException] = None

    @property
    def completed(self) -> bool:
        return self.outcome in (Outcome.SUCCEEDED, Outcome.FAILED)


class WorkerState(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"
