import argparse
import logging
import uvicorn
from pubworker.server.api import create_app
from pubworker.server.orchestrator import DEFAULT_ACK_DEADLINE, Orchestrator


def main():
    parser = argparse.ArgumentParser(description="pubworker local message broker")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8085, help="Port to bind to")
    parser.add_argument(
        "--ack-deadline",
        type=int,
        default=DEFAULT_ACK_DEADLINE,
        help="Default ack deadline for new subscriptions, in seconds",
    )
    parser.add_argument(
        "--reaper-interval",
        type=float,
        default=30.0,
        help="Lease reaper interval in seconds",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    orchestrator = Orchestrator(default_ack_deadline=args.ack_deadline)
    app = create_app(orchestrator, reaper_interval=args.reaper_interval)

    print(f"Starting pubworker broker on {args.host}:{args.port}...")
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
