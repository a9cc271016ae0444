from pubworker.core.interfaces import IJobRunner
from pubworker.core.models import JobDescription
from pubworker.core.protocol import decode_job


class JobExecutor:
    def __init__(self, runner: IJobRunner):
        self.runner = runner

    def execute(self, payload: bytes) -> JobDescription:
        """Decodes the payload and runs the job synchronously.

        Raises MalformedPayload for undecodable data; anything the runner
        raises propagates unchanged.
        """
        job = decode_job(payload)
        self.runner.execute(job)
        return job
