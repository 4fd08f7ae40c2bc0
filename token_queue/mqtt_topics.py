"""MQTT topic helpers.

We keep topic construction in one place so all components agree on naming.

Topic layout under a configurable namespace (default: `tokenqueue/v0`):

Request/response:
- `<ns>/queue/requests`
    Customers and owners send every request here.
- `<ns>/queue/responses/<client_id>`
    Each client listens for its own replies.

Streaming/broadcast:
- `<ns>/shops/<shop_id>/updates`
    The service announces every change of a shop's serving number or open flag.

You can run multiple independent deployments on a shared broker by changing
the `namespace` parameter (e.g. `--namespace demo/alice`).
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "tokenqueue/v0"


def queue_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/requests"


def queue_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/responses/{client_id}"


def shop_updates(shop_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Change notifications for one shop."""
    return f"{namespace}/shops/{shop_id}/updates"


def all_shop_updates(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Wildcard subscription matching every shop's update topic."""
    return f"{namespace}/shops/+/updates"
