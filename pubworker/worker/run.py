import argparse
import importlib
import logging
import sys
from pubworker.core.interfaces import IJobRunner
from pubworker.client.cloud import CloudPubSub
from pubworker.client.pubsub import PubSub
from pubworker.worker.runner import Worker


def load_runner(path: str) -> IJobRunner:
    """Imports a job runner given as `package.module:attribute`."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected module:attribute, got {path!r}")
    runner = getattr(importlib.import_module(module_name), attribute)
    if not isinstance(runner, IJobRunner):
        raise TypeError(f"{path} is not a job runner")
    return runner


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="pubworker job queue worker")
    parser.add_argument("--queue", default="default", help="Queue to consume")
    parser.add_argument(
        "--broker",
        help="Base URL of a pubworker-broker; Google Cloud Pub/Sub is used when omitted",
    )
    parser.add_argument(
        "--project",
        help="Google Cloud project (default: PUBSUB_PROJECT_ID or GOOGLE_CLOUD_PROJECT)",
    )
    parser.add_argument(
        "--jobs",
        help="Job runner to execute messages with, as module:attribute",
    )
    parser.add_argument("--streams", type=int, default=1, help="Pull streams")
    parser.add_argument(
        "--threads", type=int, default=1, help="Callback threads running jobs"
    )
    parser.add_argument(
        "--ensure-subscription",
        action="store_true",
        help="Create the queue's topic and subscription if missing, then exit",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    args = parser.parse_args(argv)
    if not args.jobs and not args.ensure_subscription:
        parser.error("--jobs is required unless --ensure-subscription is given")

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger("pubworker")

    if args.broker:
        pubsub = PubSub(args.broker)
    else:
        pubsub = CloudPubSub(project=args.project)
    try:
        if args.ensure_subscription:
            Worker(queue=args.queue, pubsub=pubsub, logger=logger).ensure_subscription()
            logger.info(f"Subscription for queue {args.queue} is in place")
            return 0

        worker = Worker(
            queue=args.queue,
            pubsub=pubsub,
            logger=logger,
            runner=load_runner(args.jobs),
            streams=args.streams,
            callback_threads=args.threads,
        )
        worker.run()
        return 0
    finally:
        pubsub.close()


if __name__ == "__main__":
    sys.exit(main())
