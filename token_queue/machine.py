from __future__ import annotations

# The queue state machine is the *authoritative brain* of the system.
#
# It is pure logic over the store (no MQTT), so it is easy to unit test. The
# MQTT side lives in `service.py`.
#
# Status is never stored: it is derived on every call from the calendar and the
# owner's open/closed flag. The only stored per-day state is the serving
# counter, which is zeroed lazily on the first access to a shop each day.

import logging
from datetime import datetime
from typing import Any, Callable

from . import clock
from .errors import NotFoundError, PreconditionFailed
from .feed import ShopUpdate, ShopView
from .models import (
    QueueSnapshot,
    ServingResult,
    ShopConfig,
    SystemStatus,
    TokenRecord,
    TokenResult,
    TokenStanding,
    normalize_code,
)
from .store import MemoryStore

logger = logging.getLogger(__name__)


class QueueStateMachine:
    """Token issuance and serving counter for every shop in a store."""

    def __init__(self, store: MemoryStore | None = None, *, now: Callable[[], datetime] | None = None) -> None:
        self.store = store or MemoryStore()
        self._now = now or datetime.now

        self.view = ShopView()
        self._outbox: list[ShopUpdate] = []

    # -------------------- calendar --------------------

    def today(self) -> str:
        return clock.current_date_key(self._now())

    def status(self, shop: ShopConfig) -> SystemStatus:
        """Derive the queue status. Priority: calendar, then the owner's flag."""
        if not clock.is_distribution_period(self._now()):
            return SystemStatus.INACTIVE
        if not shop.is_open:
            return SystemStatus.OWNER_CLOSED
        return SystemStatus.ACTIVE

    # -------------------- shop setup --------------------

    def shop_for_owner(self, owner_id: str) -> str:
        try:
            return self.store.registry.get_by_owner(owner_id).shop_id
        except NotFoundError:
            raise PreconditionFailed(PreconditionFailed.REASON_UNCONFIGURED, "Shop not configured") from None

    def configure_shop(self, owner_id: str, code: str, name: str) -> ShopConfig:
        """Create the owner's shop, or change its code and name.

        A code held by another shop raises ConflictError (``code_taken``).
        """
        name = name.strip()
        if not name:
            raise ValueError("name required")

        registry = self.store.registry
        try:
            existing = registry.get_by_owner(owner_id)
        except NotFoundError:
            shop = registry.create(owner_id=owner_id, code=code, name=name, today=self.today())
            logger.info("shop %s created with code %s", shop.shop_id, shop.code)
            self._emit(shop.shop_id)
            return shop

        shop = registry.update(existing.shop_id, code=code, name=name)
        logger.info("shop %s now uses code %s", shop.shop_id, shop.code)
        self._emit(shop.shop_id)
        return shop

    def set_open(self, shop_id: str, is_open: bool) -> QueueSnapshot:
        self._roll_over(shop_id)
        with self.store.transaction():
            self._fresh_shop(shop_id)
            self.store.registry.update(shop_id, is_open=bool(is_open))
        logger.info("shop %s queue %s", shop_id, "opened" if is_open else "closed")
        self._emit(shop_id)
        return self.snapshot(shop_id)

    # -------------------- reads --------------------

    def snapshot(self, shop_id: str) -> QueueSnapshot:
        self._roll_over(shop_id)
        with self.store.transaction():
            shop, reset = self._fresh_shop(shop_id)
            highest = self.store.ledger.highest_sequence(shop_id, self.today())
        if reset:
            self._emit(shop_id)

        now = self._now()
        return QueueSnapshot(
            shop_id=shop.shop_id,
            code=shop.code,
            name=shop.name,
            status=self.status(shop),
            serving_number=shop.serving_number,
            next_token=highest + 1,
            is_open=shop.is_open,
            days_remaining=clock.days_remaining_in_period(now),
            date_key=clock.current_date_key(now),
        )

    def lookup(self, code: str) -> QueueSnapshot:
        """Resolve a customer-entered code to the shop's current state."""
        canonical = normalize_code(code)
        if not canonical:
            raise NotFoundError("Queue not found")
        try:
            shop = self.store.registry.get_by_code(canonical)
        except NotFoundError:
            raise NotFoundError("Queue not found") from None
        return self.snapshot(shop.shop_id)

    def token_for(self, shop_id: str, session_id: str) -> TokenStanding:
        """The ledger's record of a session's token today (the source of truth)."""
        self._roll_over(shop_id)
        with self.store.transaction():
            shop, reset = self._fresh_shop(shop_id)
            record = self.store.ledger.find_by_session(shop_id, self.today(), session_id)
        if reset:
            self._emit(shop_id)
        if record is None:
            raise NotFoundError("No token issued today")
        return TokenStanding(record=record, serving_number=shop.serving_number)

    # -------------------- token operations --------------------

    def issue_token(self, shop_id: str, session_id: str) -> TokenResult:
        """Give ``session_id`` its token for today.

        Checks, in order: shop exists, distribution period, queue opened by
        the owner. A session that already holds a token today gets the same
        number back. The number is allocated and stored under the store lock;
        the ledger also rejects a number already taken that day.
        """
        if not session_id:
            raise ValueError("session_id required")

        try:
            self._roll_over(shop_id)
        except NotFoundError:
            raise NotFoundError("Queue not found") from None

        with self.store.transaction():
            shop, reset = self._fresh_shop(shop_id)
            self._require_status(shop, allow_owner_closed=False)

            today = self.today()
            ledger = self.store.ledger
            existing = ledger.find_by_session(shop_id, today, session_id)
            if existing is not None:
                result = TokenResult(
                    shop_id=shop_id,
                    session_id=session_id,
                    issue_date=today,
                    sequence_number=existing.sequence_number,
                    already_issued=True,
                )
            else:
                number = ledger.highest_sequence(shop_id, today) + 1
                ledger.insert(
                    TokenRecord(shop_id=shop_id, issue_date=today, session_id=session_id, sequence_number=number)
                )
                result = TokenResult(shop_id=shop_id, session_id=session_id, issue_date=today, sequence_number=number)

        if reset:
            self._emit(shop_id)
        if not result.already_issued:
            logger.info("shop %s issued token %d", shop_id, result.sequence_number)
        return result

    def advance_serving(self, shop_id: str) -> ServingResult:
        """Call the next number.

        The counter only moves forward and may pass the highest issued token.
        Every token below the new number is expired (its holder was skipped).
        Allowed while the owner has the queue closed, so a closed queue can
        still be drained; refused outside the distribution period.
        """
        self._roll_over(shop_id)
        with self.store.transaction():
            shop, _reset = self._fresh_shop(shop_id)
            self._require_status(shop, allow_owner_closed=True)

            serving = shop.serving_number + 1
            self.store.registry.update(shop_id, serving_number=serving)
            expired = self.store.ledger.mark_expired_below(shop_id, self.today(), serving)

        logger.info("shop %s now serving %d (%d expired)", shop_id, serving, expired)
        self._emit(shop_id)
        return ServingResult(shop_id=shop_id, serving_number=serving, expired_count=expired)

    # -------------------- change feed --------------------

    def apply_update(self, message: dict[str, Any]) -> bool:
        """Fold an incoming change notification into this instance's view."""
        return self.view.apply(ShopUpdate.from_message(message))

    def drain_updates(self) -> list[ShopUpdate]:
        """Return (and forget) the updates produced since the last call."""
        updates, self._outbox = self._outbox, []
        return updates

    # -------------------- internals --------------------

    def _roll_over(self, shop_id: str) -> None:
        # Committed on its own so a refused request still leaves the day reset.
        shop, reset = self.store.registry.reset_if_stale(shop_id, self.today())
        if reset:
            logger.info("shop %s reset for %s", shop_id, shop.last_reset_date)
            self._emit(shop_id)

    def _fresh_shop(self, shop_id: str) -> tuple[ShopConfig, bool]:
        return self.store.registry.reset_if_stale(shop_id, self.today())

    def _require_status(self, shop: ShopConfig, *, allow_owner_closed: bool) -> None:
        status = self.status(shop)
        if status is SystemStatus.INACTIVE:
            raise PreconditionFailed(
                PreconditionFailed.REASON_INACTIVE,
                "The queue only runs from the 1st to the 15th of each month.",
            )
        if status is SystemStatus.OWNER_CLOSED and not allow_owner_closed:
            raise PreconditionFailed(
                PreconditionFailed.REASON_OWNER_CLOSED,
                "The queue is currently closed by the owner.",
            )

    def _emit(self, shop_id: str) -> None:
        update = ShopUpdate.from_shop(self.store.registry.get(shop_id))
        self.view.apply(update)
        self._outbox.append(update)
