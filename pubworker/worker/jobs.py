import logging
import time
from typing import Any, Callable, Dict, Optional
from pubworker.core.errors import JobExecutionError
from pubworker.core.interfaces import IJobRunner
from pubworker.core.models import JobDescription

logger = logging.getLogger(__name__)

JobFunction = Callable[..., Any]


class JobRegistry(IJobRunner):
    """Maps job class names to plain functions and runs them.

    Functions are registered under `module.qualname` unless a name is given:

        jobs = JobRegistry()

        @jobs.register
        def send_email(address): ...

        @jobs.register(name="reports.nightly")
        def nightly(): ...
    """

    def __init__(self):
        self._jobs: Dict[str, JobFunction] = {}

    def register(self, fn: Optional[JobFunction] = None, *, name: Optional[str] = None):
        def decorator(func: JobFunction) -> JobFunction:
            job_name = name or f"{func.__module__}.{func.__qualname__}"
            if job_name in self._jobs and self._jobs[job_name] is not func:
                raise ValueError(f"Job {job_name} is already registered")
            self._jobs[job_name] = func
            func.job_name = job_name  # type: ignore[attr-defined]
            return func

        if fn is not None:
            return decorator(fn)
        return decorator

    def get(self, name: str) -> Optional[JobFunction]:
        return self._jobs.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def execute(self, job: JobDescription) -> None:
        func = self._jobs.get(job.job_class)
        if func is None:
            raise JobExecutionError(f"Unknown job class {job.job_class}")

        logger.info(f"Performing {job.job_class} (Job ID: {job.job_id})")
        started = time.perf_counter()
        func(*job.arguments, **job.keyword_arguments)
        logger.info(
            f"Performed {job.job_class} (Job ID: {job.job_id}) "
            f"in {(time.perf_counter() - started) * 1000:.1f}ms"
        )
