from __future__ import annotations

# MQTT adapter around the QueueStateMachine business logic.
#
# Every request arrives on `<ns>/queue/requests` with `reply_to` and `corr_id`.
# The reply is either a typed result message or the shared error envelope.
# After each request, shop changes produced by the state machine are published
# on `<ns>/shops/<shop_id>/updates`.

import argparse
import logging
import time
from typing import Any, Callable, TYPE_CHECKING

from .errors import ConflictError, ErrorResponse, NotFoundError, PreconditionFailed, TokenQueueError
from .machine import QueueStateMachine
from .mqtt_topics import DEFAULT_NAMESPACE, all_shop_updates, queue_requests, shop_updates

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)

RequestHandler = Callable[[dict[str, Any]], dict[str, Any]]


class MqttTokenService:
    def __init__(
        self,
        *,
        mqtt: MqttClient,
        namespace: str = DEFAULT_NAMESPACE,
        machine: QueueStateMachine | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.namespace = namespace
        self.machine = machine or QueueStateMachine()

        self._handlers: dict[str, RequestHandler] = {
            "lookup_shop": self._lookup_shop,
            "issue_token": self._issue_token,
            "my_token": self._my_token,
            "owner_state": self._owner_state,
            "configure_shop": self._configure_shop,
            "set_open": self._set_open,
            "advance_serving": self._advance_serving,
        }

    def start(self) -> None:
        self.mqtt.subscribe(queue_requests(self.namespace))
        # Updates from other service instances sharing the namespace.
        self.mqtt.subscribe(all_shop_updates(self.namespace))
        self.mqtt.add_handler(self._handle_message)

    def handle_request(self, msg: dict[str, Any]) -> dict[str, Any]:
        """Run one request and return the reply message (never raises)."""
        mtype = msg.get("type")
        handler = self._handlers.get(mtype) if isinstance(mtype, str) else None
        if handler is None:
            return ErrorResponse("bad_request", f"unknown request type {mtype!r}").to_message()

        try:
            return handler(msg)
        except PreconditionFailed as e:
            logger.info("%s refused: %s", mtype, e.reason)
            return e.to_response().to_message()
        except NotFoundError as e:
            logger.info("%s: %s", mtype, e.message)
            return e.to_response().to_message()
        except ConflictError as e:
            logger.warning("%s conflict: %s", mtype, e.message)
            if e.code == "code_taken":
                return ErrorResponse(e.code, "Code already taken, please choose a different queue code").to_message()
            return e.to_response().to_message()
        except TokenQueueError as e:
            logger.error("%s failed: %s", mtype, e.message)
            return e.to_response().to_message()
        except ValueError as e:
            return ErrorResponse("bad_request", str(e)).to_message()
        finally:
            self._publish_updates()

    def _publish_updates(self) -> None:
        for update in self.machine.drain_updates():
            self.mqtt.publish(shop_updates(update.shop_id, self.namespace), update.to_message())

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        if msg.get("type") == "shop_update":
            try:
                self.machine.apply_update(msg)
            except ValueError:
                logger.warning("ignoring malformed update on %s", topic)
            return

        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None
        if not reply_to:
            return
        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        self._reply(reply_to, corr_id, self.handle_request(msg))

    # -------------------- customer requests --------------------

    def _lookup_shop(self, msg: dict[str, Any]) -> dict[str, Any]:
        return self.machine.lookup(_required_str(msg, "code")).to_message()

    def _issue_token(self, msg: dict[str, Any]) -> dict[str, Any]:
        result = self.machine.issue_token(_required_str(msg, "shop_id"), _required_str(msg, "session_id"))
        return result.to_message()

    def _my_token(self, msg: dict[str, Any]) -> dict[str, Any]:
        standing = self.machine.token_for(_required_str(msg, "shop_id"), _required_str(msg, "session_id"))
        return standing.to_message()

    # -------------------- owner requests --------------------
    #
    # `owner_id` is the identity already resolved by the external identity
    # provider; the service only maps it to the owner's shop.

    def _owner_state(self, msg: dict[str, Any]) -> dict[str, Any]:
        shop_id = self.machine.shop_for_owner(_required_str(msg, "owner_id"))
        return self.machine.snapshot(shop_id).to_message()

    def _configure_shop(self, msg: dict[str, Any]) -> dict[str, Any]:
        shop = self.machine.configure_shop(
            _required_str(msg, "owner_id"),
            _required_str(msg, "code"),
            _required_str(msg, "name"),
        )
        return {"type": "shop_configured", "shop_id": shop.shop_id, "code": shop.code, "name": shop.name}

    def _set_open(self, msg: dict[str, Any]) -> dict[str, Any]:
        is_open = msg.get("is_open")
        if not isinstance(is_open, bool):
            raise ValueError("is_open must be true or false")
        shop_id = self.machine.shop_for_owner(_required_str(msg, "owner_id"))
        return self.machine.set_open(shop_id, is_open).to_message()

    def _advance_serving(self, msg: dict[str, Any]) -> dict[str, Any]:
        shop_id = self.machine.shop_for_owner(_required_str(msg, "owner_id"))
        return self.machine.advance_serving(shop_id).to_message()


def _required_str(msg: dict[str, Any], key: str) -> str:
    value = msg.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} required")
    return value


def main() -> None:
    # Import MQTT dependencies only when running the real service.
    from .mqtt_client import MqttClient

    parser = argparse.ArgumentParser(description="Token Service (MQTT)")
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    parser.add_argument("--client-id", default="token-service")
    args = parser.parse_args()

    mqtt_client = MqttClient(client_id=args.client_id, host=args.mqtt_host, port=args.mqtt_port)
    mqtt_client.start()

    service = MqttTokenService(mqtt=mqtt_client, namespace=args.namespace)
    service.start()

    print(f"[service] connected to MQTT {args.mqtt_host}:{args.mqtt_port}, namespace={args.namespace}")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        mqtt_client.stop()


if __name__ == "__main__":
    main()
