from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from pubworker.core.errors import AlreadyExistsError, NotFoundError
from pubworker.core.protocol import decode_data, encode_data
from .orchestrator import Orchestrator


class PublishRequest(BaseModel):
    data: str  # base64
    attributes: Dict[str, str] = Field(default_factory=dict)


class SubscriptionRequest(BaseModel):
    topic: str
    ack_deadline_seconds: Optional[int] = None


class PullRequest(BaseModel):
    max_messages: int = Field(default=1, ge=1, le=1000)


class AcknowledgeRequest(BaseModel):
    ack_ids: List[str]


class ModifyAckDeadlineRequest(BaseModel):
    ack_ids: List[str]
    ack_deadline_seconds: int


def create_app(
    orchestrator: Optional[Orchestrator] = None, reaper_interval: float = 30.0
) -> FastAPI:
    orch = orchestrator or Orchestrator()
    app = FastAPI(title="pubworker broker")
    app.state.orchestrator = orch

    @app.on_event("startup")
    def startup_event():
        orch.start_reaper(interval=reaper_interval)

    @app.on_event("shutdown")
    def shutdown_event():
        orch.stop_reaper()

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(AlreadyExistsError)
    async def already_exists(request: Request, exc: AlreadyExistsError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def bad_value(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.put("/topics/{topic}")
    def create_topic(topic: str):
        return orch.create_topic(topic).model_dump()

    @app.get("/topics/{topic}")
    def get_topic(topic: str):
        return orch.get_topic(topic).model_dump()

    @app.post("/topics/{topic}/publish")
    def publish(topic: str, request: PublishRequest):
        message_id = orch.publish(topic, decode_data(request.data), request.attributes)
        return {"message_id": message_id}

    @app.put("/subscriptions/{subscription}")
    def create_subscription(subscription: str, request: SubscriptionRequest):
        return orch.create_subscription(
            subscription, request.topic, request.ack_deadline_seconds
        ).model_dump()

    @app.get("/subscriptions/{subscription}")
    def get_subscription(subscription: str):
        return orch.get_subscription(subscription).model_dump()

    @app.post("/subscriptions/{subscription}/pull")
    def pull(subscription: str, request: PullRequest):
        leases = orch.pull(subscription, request.max_messages)
        return {
            "received_messages": [
                {
                    "ack_id": lease.ack_id,
                    "message_id": lease.message.message_id,
                    "data": encode_data(lease.message.data),
                    "attributes": lease.message.attributes,
                    "publish_time": lease.message.publish_time,
                    "delivery_attempt": lease.delivery_attempt,
                }
                for lease in leases
            ]
        }

    @app.post("/subscriptions/{subscription}/acknowledge")
    def acknowledge(subscription: str, request: AcknowledgeRequest):
        orch.acknowledge(subscription, request.ack_ids)
        return {"status": "acknowledged"}

    @app.post("/subscriptions/{subscription}/modify_ack_deadline")
    def modify_ack_deadline(subscription: str, request: ModifyAckDeadlineRequest):
        orch.modify_ack_deadline(
            subscription, request.ack_ids, request.ack_deadline_seconds
        )
        return {"status": "modified"}

    return app


app = create_app()
