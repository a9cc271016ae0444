import random
import time
from pubworker.worker.jobs import JobRegistry

jobs = JobRegistry()


@jobs.register(name="demo.greet")
def greet(name, punctuation="!"):
    print(f"Hello {name}{punctuation}")


@jobs.register(name="demo.slow")
def slow(seconds):
    # Longer than a short ack deadline; the lease extender keeps it leased
    time.sleep(seconds)
    print(f"Slept {seconds}s")


@jobs.register(name="demo.flaky")
def flaky():
    if random.random() < 0.5:
        raise RuntimeError("flaky job failed")
    print("flaky job succeeded")
