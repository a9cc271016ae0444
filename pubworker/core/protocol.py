import base64
import binascii
from enum import IntEnum
from pydantic import ValidationError
from pubworker.core.errors import MalformedPayload
from pubworker.core.models import JobDescription


class Command(IntEnum):
    CREATE_TOPIC = 1
    GET_TOPIC = 2
    CREATE_SUBSCRIPTION = 3
    GET_SUBSCRIPTION = 4
    PUBLISH = 5
    PULL = 6
    ACKNOWLEDGE = 7
    MODIFY_ACK_DEADLINE = 8


TOPIC_PREFIX = "activejob-queue-"
SUBSCRIPTION_PREFIX = "activejob-worker-"


def topic_name_for(queue_name: str) -> str:
    return f"{TOPIC_PREFIX}{queue_name}"


def subscription_name_for(queue_name: str) -> str:
    return f"{SUBSCRIPTION_PREFIX}{queue_name}"


def encode_job(job: JobDescription) -> bytes:
    return job.model_dump_json().encode("utf-8")


def decode_job(data: bytes) -> JobDescription:
    """Parse message data into a job description, raising MalformedPayload."""
    try:
        return JobDescription.model_validate_json(data)
    except (ValidationError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"Cannot decode job payload: {e}") from e


def encode_data(data: bytes) -> str:
    """Binary message data travels base64-encoded inside JSON bodies."""
    return base64.b64encode(data).decode("ascii")


def decode_data(text: str) -> bytes:
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64 data: {e}") from e
