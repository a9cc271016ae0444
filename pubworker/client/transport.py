import httpx
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from pubworker.core.errors import AlreadyExistsError, NotFoundError, TransportError
from pubworker.core.protocol import Command, decode_data, encode_data

logger = logging.getLogger(__name__)


class ITransport(ABC):
    @abstractmethod
    def request(self, command: Command, payload: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    def close(self):
        pass


class HttpTransport(ITransport):
    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def request(self, command: Command, payload: Dict[str, Any]) -> Any:
        payload = dict(payload)
        try:
            return self._send(command, payload)
        except httpx.ConnectError as e:
            # Request never reached the broker, safe to send again
            logger.warning(f"{command.name} failed ({e}), retrying once")
            try:
                return self._send(command, payload)
            except httpx.TransportError as e2:
                raise TransportError(f"{command.name} failed: {e2}", cause=e2) from e2
        except httpx.TransportError as e:
            raise TransportError(f"{command.name} failed: {e}", cause=e) from e

    def _send(self, command: Command, payload: Dict[str, Any]) -> Any:
        if command == Command.CREATE_TOPIC:
            response = self._client.put(f"{self.base_url}/topics/{payload['topic']}")
            return self._json(command, response)

        elif command == Command.GET_TOPIC:
            response = self._client.get(f"{self.base_url}/topics/{payload['topic']}")
            return self._json(command, response)

        elif command == Command.CREATE_SUBSCRIPTION:
            response = self._client.put(
                f"{self.base_url}/subscriptions/{payload['subscription']}",
                json={
                    "topic": payload["topic"],
                    "ack_deadline_seconds": payload.get("ack_deadline_seconds"),
                },
            )
            return self._json(command, response)

        elif command == Command.GET_SUBSCRIPTION:
            response = self._client.get(
                f"{self.base_url}/subscriptions/{payload['subscription']}"
            )
            return self._json(command, response)

        elif command == Command.PUBLISH:
            response = self._client.post(
                f"{self.base_url}/topics/{payload['topic']}/publish",
                json={
                    "data": encode_data(payload["data"]),
                    "attributes": payload.get("attributes") or {},
                },
            )
            return self._json(command, response)

        elif command == Command.PULL:
            response = self._client.post(
                f"{self.base_url}/subscriptions/{payload['subscription']}/pull",
                json={"max_messages": payload.get("max_messages", 1)},
            )
            body = self._json(command, response)
            for received in body["received_messages"]:
                received["data"] = decode_data(received["data"])
            return body

        elif command == Command.ACKNOWLEDGE:
            response = self._client.post(
                f"{self.base_url}/subscriptions/{payload['subscription']}/acknowledge",
                json={"ack_ids": payload["ack_ids"]},
            )
            return self._json(command, response)

        elif command == Command.MODIFY_ACK_DEADLINE:
            response = self._client.post(
                f"{self.base_url}/subscriptions/{payload['subscription']}/modify_ack_deadline",
                json={
                    "ack_ids": payload["ack_ids"],
                    "ack_deadline_seconds": payload["ack_deadline_seconds"],
                },
            )
            return self._json(command, response)

        raise ValueError(f"Unknown command for HTTP transport: {command}")

    def _json(self, command: Command, response: httpx.Response) -> Any:
        if response.status_code == 404:
            raise NotFoundError(_detail(response))
        if response.status_code == 409:
            raise AlreadyExistsError(_detail(response))
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"{command.name} failed: {e}", cause=e) from e
        return response.json()

    def close(self):
        self._client.close()


class LocalTransport(ITransport):
    """Talks to an in-process broker; handy for tests and single-process setups."""

    def __init__(self, orchestrator=None):
        from pubworker.server.orchestrator import Orchestrator

        self.orchestrator = orchestrator or Orchestrator()

    def request(self, command: Command, payload: Dict[str, Any]) -> Any:
        orch = self.orchestrator

        if command == Command.CREATE_TOPIC:
            return orch.create_topic(payload["topic"]).model_dump()

        elif command == Command.GET_TOPIC:
            return orch.get_topic(payload["topic"]).model_dump()

        elif command == Command.CREATE_SUBSCRIPTION:
            return orch.create_subscription(
                payload["subscription"],
                payload["topic"],
                payload.get("ack_deadline_seconds"),
            ).model_dump()

        elif command == Command.GET_SUBSCRIPTION:
            return orch.get_subscription(payload["subscription"]).model_dump()

        elif command == Command.PUBLISH:
            message_id = orch.publish(
                payload["topic"], payload["data"], payload.get("attributes")
            )
            return {"message_id": message_id}

        elif command == Command.PULL:
            leases = orch.pull(payload["subscription"], payload.get("max_messages", 1))
            return {
                "received_messages": [
                    {
                        "ack_id": lease.ack_id,
                        "message_id": lease.message.message_id,
                        "data": lease.message.data,
                        "attributes": dict(lease.message.attributes),
                        "publish_time": lease.message.publish_time,
                        "delivery_attempt": lease.delivery_attempt,
                    }
                    for lease in leases
                ]
            }

        elif command == Command.ACKNOWLEDGE:
            orch.acknowledge(payload["subscription"], payload["ack_ids"])
            return {"status": "acknowledged"}

        elif command == Command.MODIFY_ACK_DEADLINE:
            orch.modify_ack_deadline(
                payload["subscription"],
                payload["ack_ids"],
                payload["ack_deadline_seconds"],
            )
            return {"status": "modified"}

        raise ValueError(f"Unknown command for local transport: {command}")

    def close(self):
        pass


def _detail(response: httpx.Response) -> str:
    try:
        return response.json().get("detail", response.text)
    except ValueError:
        return response.text
