from typing import Optional


class PubWorkerError(Exception):
    pass


class TransportError(PubWorkerError):
    """Broker call failed (connectivity, unexpected status, server error)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class NotFoundError(TransportError):
    pass


class AlreadyExistsError(TransportError):
    pass


class MalformedPayload(PubWorkerError):
    """Message data could not be decoded into a job description."""


class JobExecutionError(PubWorkerError):
    pass


class LeaseRenewalError(PubWorkerError):
    def __init__(self, message_id: str, reason: str):
        self.message_id = message_id
        self.reason = reason
        super().__init__(f"Message({message_id}) lease renewal failed: {reason}")
