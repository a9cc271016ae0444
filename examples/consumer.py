import logging
from pubworker.worker.runner import Worker
from jobs import jobs


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Same as: pubworker --broker http://127.0.0.1:8085 --jobs jobs:jobs
    worker = Worker(queue="default", pubsub="http://127.0.0.1:8085", runner=jobs)
    print("Worker started. Send SIGINT/SIGTERM/SIGQUIT to drain and exit.")
    worker.run()


if __name__ == "__main__":
    main()
