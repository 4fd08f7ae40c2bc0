from __future__ import annotations

# Customer client.
#
# A customer is a short-lived process:
# - connect to broker
# - resolve the shop code the customer typed
# - ask for a token (or re-check the one already held)
# - print the result and exit
#
# The session id is the customer's idempotency key: it is generated once and
# reused from the session file, so running the command twice on the same day
# returns the same token.

import argparse
import json
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, queue_requests, queue_responses

DEFAULT_SESSION_FILE = Path.home() / ".token_queue_session.json"


@dataclass
class CustomerSession:
    """Client-side context passed into every customer request.

    `tokens` caches "my token" per day and shop ({date: {shop_id: token}}).
    It only saves a round trip for display; the service's ledger stays the
    source of truth.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    tokens: dict[str, dict[str, int]] = field(default_factory=dict)

    def cached_token(self, shop_id: str, date_key: str) -> int | None:
        return self.tokens.get(date_key, {}).get(shop_id)

    def remember(self, shop_id: str, date_key: str, token: int) -> None:
        # Older days are never looked at again.
        self.tokens = {date_key: {**self.tokens.get(date_key, {}), shop_id: token}}

    def forget(self, shop_id: str, date_key: str) -> None:
        self.tokens.get(date_key, {}).pop(shop_id, None)

    def reconcile(self, reply: dict[str, Any]) -> None:
        """Bring the cache in line with a `token` or `my_token` reply."""
        if reply.get("type") in ("token", "my_token"):
            self.remember(str(reply["shop_id"]), str(reply["issue_date"]), int(reply["token"]))


def load_session(path: Path) -> CustomerSession:
    """Load the session file; a missing or unreadable file starts a new session."""
    if not path.exists():
        return CustomerSession()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        return CustomerSession()
    if not isinstance(data, dict) or not isinstance(data.get("session_id"), str):
        return CustomerSession()

    tokens: dict[str, dict[str, int]] = {}
    raw_tokens = data.get("tokens")
    if isinstance(raw_tokens, dict):
        for date_key, per_shop in raw_tokens.items():
            if isinstance(per_shop, dict):
                tokens[str(date_key)] = {str(k): int(v) for k, v in per_shop.items() if isinstance(v, int)}
    return CustomerSession(session_id=data["session_id"], tokens=tokens)


def save_session(session: CustomerSession, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"session_id": session.session_id, "tokens": session.tokens}, f, indent=2)


def take_token(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    code: str,
    session: CustomerSession,
    check_only: bool = False,
) -> dict[str, Any]:
    """Resolve `code` and request (or, with `check_only`, look up) the session's token."""
    client_id = f"customer-{session.session_id[:8]}-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = queue_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)

    def call(message: dict[str, Any]) -> dict[str, Any]:
        return mqtt.request(
            request_topic=queue_requests(namespace),
            response_topic=reply_topic,
            message=message,
            timeout=5.0,
        )

    try:
        state = call({"type": "lookup_shop", "code": code})
        if state.get("type") != "queue_state":
            return state

        shop_id = state["shop_id"]
        request_type = "my_token" if check_only else "issue_token"
        reply = call({"type": request_type, "shop_id": shop_id, "session_id": session.session_id})
        if reply.get("type") in ("token", "my_token"):
            session.reconcile(reply)
        elif reply.get("code") == "not_found":
            session.forget(shop_id, state["date_key"])
        return reply
    finally:
        mqtt.stop()


def describe(reply: dict[str, Any]) -> str:
    mtype = reply.get("type")
    if mtype == "token":
        if reply.get("already_issued"):
            return f"you already have token {reply['token']} for today"
        return f"your token number is {reply['token']}"
    if mtype == "my_token":
        if reply.get("expired"):
            return f"token {reply['token']} was skipped (now serving {reply['serving_number']})"
        return f"token {reply['token']}, now serving {reply['serving_number']}, {reply['tokens_ahead']} ahead of you"
    return f"error: {reply.get('message', reply)}"


def main() -> None:
    parser = argparse.ArgumentParser(description="Customer client (MQTT)")
    parser.add_argument("--code", required=True, help="shop code shown at the counter")
    parser.add_argument("--check", action="store_true", help="only show the token already taken today")
    parser.add_argument("--session-file", type=Path, default=DEFAULT_SESSION_FILE)
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    args = parser.parse_args()

    session = load_session(args.session_file)
    reply = take_token(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        code=args.code,
        session=session,
        check_only=args.check,
    )
    save_session(session, args.session_file)
    print(f"[customer {args.code}] {describe(reply)}")


if __name__ == "__main__":
    main()
