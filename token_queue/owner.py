from __future__ import annotations

# Owner client.
#
# One command per owner action:
# - configure: set the shop's public code and display name (creates the shop)
# - open / close: allow or stop token issuance
# - next: call the next token number
# - state: show the current queue state
#
# `--owner-id` is the identity issued by the external login; the service maps
# it to the owner's shop.

import argparse
import time
from typing import Any

from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, queue_requests, queue_responses

ACTIONS = ("state", "configure", "open", "close", "next")


def build_request(action: str, *, owner_id: str, code: str | None = None, name: str | None = None) -> dict[str, Any]:
    if action == "state":
        return {"type": "owner_state", "owner_id": owner_id}
    if action == "configure":
        if not code or not name:
            raise ValueError("configure needs --code and --name")
        return {"type": "configure_shop", "owner_id": owner_id, "code": code, "name": name}
    if action in ("open", "close"):
        return {"type": "set_open", "owner_id": owner_id, "is_open": action == "open"}
    if action == "next":
        return {"type": "advance_serving", "owner_id": owner_id}
    raise ValueError(f"unknown action {action!r}")


def run_owner_action(*, mqtt_host: str, mqtt_port: int, namespace: str, message: dict[str, Any]) -> dict[str, Any]:
    client_id = f"owner-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = queue_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)

    try:
        return mqtt.request(
            request_topic=queue_requests(namespace),
            response_topic=reply_topic,
            message=message,
            timeout=5.0,
        )
    finally:
        mqtt.stop()


def describe(reply: dict[str, Any]) -> str:
    mtype = reply.get("type")
    if mtype == "queue_state":
        return (
            f"{reply['name']} ({reply['code']}): {reply['status']}, now serving {reply['serving_number']}, "
            f"next token {reply['next_token']}, {reply['days_remaining']} day(s) left in period"
        )
    if mtype == "serving_advanced":
        return f"now serving token #{reply['serving_number']} ({reply['expired_count']} skipped)"
    if mtype == "shop_configured":
        return f"settings saved, queue code: {reply['code']}"
    return f"error: {reply.get('message', reply)}"


def main() -> None:
    parser = argparse.ArgumentParser(description="Owner client (MQTT)")
    parser.add_argument("action", choices=ACTIONS)
    parser.add_argument("--owner-id", required=True)
    parser.add_argument("--code", default=None, help="public queue code (configure)")
    parser.add_argument("--name", default=None, help="business name (configure)")
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    args = parser.parse_args()

    try:
        message = build_request(args.action, owner_id=args.owner_id, code=args.code, name=args.name)
    except ValueError as e:
        parser.error(str(e))

    reply = run_owner_action(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        message=message,
    )
    print(f"[owner {args.owner_id}] {describe(reply)}")


if __name__ == "__main__":
    main()
