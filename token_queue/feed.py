"""Shop change notifications.

Every change to a shop row is announced as a ``ShopUpdate``. Delivery is
at-least-once and payloads may be partial, so a ``ShopView`` only trusts an
update that carries every field; anything else marks the shop as stale and
the holder re-reads it from the service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from .models import QueueSnapshot, ShopConfig


@dataclass(frozen=True)
class ShopUpdate:
    shop_id: str
    serving_number: int | None = None
    is_open: bool | None = None

    @property
    def is_complete(self) -> bool:
        return self.serving_number is not None and self.is_open is not None

    @classmethod
    def from_shop(cls, shop: ShopConfig) -> ShopUpdate:
        return cls(shop_id=shop.shop_id, serving_number=shop.serving_number, is_open=shop.is_open)

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "shop_update",
            "shop_id": self.shop_id,
            "serving_number": self.serving_number,
            "is_open": self.is_open,
        }

    @classmethod
    def from_message(cls, msg: dict[str, Any]) -> ShopUpdate:
        shop_id = msg.get("shop_id")
        if not isinstance(shop_id, str) or not shop_id:
            raise ValueError("shop_id required")

        serving = msg.get("serving_number")
        if isinstance(serving, bool) or not isinstance(serving, int) or serving < 0:
            serving = None
        is_open = msg.get("is_open")
        if not isinstance(is_open, bool):
            is_open = None
        return cls(shop_id=shop_id, serving_number=serving, is_open=is_open)


class ShopView:
    """Last known ``{serving_number, is_open}`` per watched shop.

    With ``shop_ids=None`` every shop is watched.
    """

    def __init__(self, shop_ids: Iterable[str] | None = None) -> None:
        self._watched = set(shop_ids) if shop_ids is not None else None
        self._latest: dict[str, ShopUpdate] = {}
        self._stale: set[str] = set()

    def watch(self, shop_id: str) -> None:
        if self._watched is not None:
            self._watched.add(shop_id)

    def watches(self, shop_id: str) -> bool:
        return self._watched is None or shop_id in self._watched

    def apply(self, update: ShopUpdate) -> bool:
        """Fold one notification into the view. Returns True if anything changed."""
        if not self.watches(update.shop_id):
            return False
        if not update.is_complete:
            self._stale.add(update.shop_id)
            return True
        self._stale.discard(update.shop_id)
        changed = self._latest.get(update.shop_id) != update
        self._latest[update.shop_id] = update
        return changed

    def refresh(self, snapshot: QueueSnapshot) -> None:
        """Replace a shop's entry with a freshly read state."""
        self.apply(ShopUpdate(snapshot.shop_id, snapshot.serving_number, snapshot.is_open))

    def needs_reread(self, shop_id: str) -> bool:
        return shop_id in self._stale

    def get(self, shop_id: str) -> ShopUpdate | None:
        return self._latest.get(shop_id)
