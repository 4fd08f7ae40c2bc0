"""In-memory transactional store for shop rows and the token ledger.

The store owns all mutable rows behind one re-entrant lock. Multi-step
operations run inside ``transaction()``: the lock is held for the whole block
and every write records how to undo itself. If the block raises, the
outermost transaction replays that log backwards, so nothing it wrote stays
visible. Reads record nothing. Readers always receive copies, so a row can
only change through ``ShopRegistry.update`` / ``TokenLedger``.

Tokens are filed per ``(shop_id, issue_date)`` in a ``TokenDay``; the ledger
never looks at days other than the one asked about.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator

from .errors import ConflictError, DuplicateError, NotFoundError
from .models import ShopConfig, TokenRecord, normalize_code

_UPDATABLE_FIELDS = frozenset({"code", "name", "serving_number", "last_reset_date", "is_open"})

DayKey = tuple[str, str]


@dataclass
class TokenDay:
    """One shop's tokens for one day."""

    by_session: dict[str, TokenRecord] = field(default_factory=dict)
    by_number: dict[int, str] = field(default_factory=dict)
    highest: int = 0


class MemoryStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._undo: list[Callable[[], None]] | None = None
        self.shops: dict[str, ShopConfig] = {}
        self.days: dict[DayKey, TokenDay] = {}

        self.registry = ShopRegistry(self)
        self.ledger = TokenLedger(self)

    @contextmanager
    def transaction(self) -> Iterator[MemoryStore]:
        with self._lock:
            if self._undo is not None:
                # Nested: the outermost transaction owns the undo log.
                yield self
                return

            self._undo = []
            try:
                yield self
            except BaseException:
                for undo in reversed(self._undo):
                    undo()
                raise
            finally:
                self._undo = None

    def day(self, shop_id: str, issue_date: str) -> TokenDay | None:
        return self.days.get((shop_id, issue_date))

    # -------------------- logged writes --------------------

    def put_shop(self, shop: ShopConfig) -> None:
        previous = self.shops.get(shop.shop_id)
        self.shops[shop.shop_id] = shop
        if previous is None:
            self._log(lambda: self.shops.pop(shop.shop_id, None))
        else:
            self._log(lambda: self.shops.__setitem__(shop.shop_id, previous))

    def add_token(self, record: TokenRecord) -> None:
        key = (record.shop_id, record.issue_date)
        day = self.days.get(key)
        if day is None:
            day = self.days[key] = TokenDay()
            self._log(lambda: self.days.pop(key, None))

        previous_highest = day.highest
        day.by_session[record.session_id] = record
        day.by_number[record.sequence_number] = record.session_id
        day.highest = max(day.highest, record.sequence_number)

        def undo() -> None:
            day.by_session.pop(record.session_id, None)
            day.by_number.pop(record.sequence_number, None)
            day.highest = previous_highest

        self._log(undo)

    def replace_token(self, record: TokenRecord) -> None:
        day = self.days[(record.shop_id, record.issue_date)]
        previous = day.by_session[record.session_id]
        day.by_session[record.session_id] = record
        self._log(lambda: day.by_session.__setitem__(record.session_id, previous))

    def _log(self, undo: Callable[[], None]) -> None:
        if self._undo is None:
            raise RuntimeError("store writes must run inside transaction()")
        self._undo.append(undo)


class ShopRegistry:
    """Shop rows, addressed by id, public code or owner identity."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def create(self, *, owner_id: str, code: str, name: str, today: str) -> ShopConfig:
        code = _require_code(code)
        with self._store.transaction() as st:
            if any(s.owner_id == owner_id for s in st.shops.values()):
                raise ConflictError(f"owner {owner_id!r} already has a shop", code="owner_has_shop")
            self._check_code_free(code, shop_id=None)
            shop = ShopConfig(
                shop_id=uuid.uuid4().hex,
                owner_id=owner_id,
                code=code,
                name=name,
                serving_number=0,
                last_reset_date=today,
                is_open=False,
            )
            st.put_shop(shop)
            return replace(shop)

    def get(self, shop_id: str) -> ShopConfig:
        with self._store.transaction() as st:
            shop = st.shops.get(shop_id)
            if shop is None:
                raise NotFoundError(f"unknown shop {shop_id!r}")
            return replace(shop)

    def get_by_code(self, code: str) -> ShopConfig:
        with self._store.transaction() as st:
            for shop in st.shops.values():
                if shop.code == code:
                    return replace(shop)
        raise NotFoundError(f"no shop with code {code!r}")

    def get_by_owner(self, owner_id: str) -> ShopConfig:
        with self._store.transaction() as st:
            for shop in st.shops.values():
                if shop.owner_id == owner_id:
                    return replace(shop)
        raise NotFoundError(f"no shop for owner {owner_id!r}")

    def update(self, shop_id: str, **fields: Any) -> ShopConfig:
        """Apply a partial update atomically and return the new row.

        A ``code`` already used by another shop raises ``ConflictError`` with
        code ``code_taken``.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update fields: {sorted(unknown)}")
        if "code" in fields:
            fields["code"] = _require_code(fields["code"])
        if "serving_number" in fields and int(fields["serving_number"]) < 0:
            raise ValueError("serving_number must be >= 0")

        with self._store.transaction() as st:
            shop = st.shops.get(shop_id)
            if shop is None:
                raise NotFoundError(f"unknown shop {shop_id!r}")
            if "code" in fields:
                self._check_code_free(fields["code"], shop_id=shop_id)
            updated = replace(shop, **fields)
            st.put_shop(updated)
            return replace(updated)

    def reset_if_stale(self, shop_id: str, today: str) -> tuple[ShopConfig, bool]:
        """Zero the counter and close the queue if the row is from another day.

        Compare and reset happen under the store lock, so concurrent first
        accesses on a new day reset exactly once. Returns the current row and
        whether a reset happened.
        """
        with self._store.transaction():
            shop = self.get(shop_id)
            if shop.last_reset_date == today:
                return shop, False
            return self.update(shop_id, serving_number=0, last_reset_date=today, is_open=False), True

    def _check_code_free(self, code: str, *, shop_id: str | None) -> None:
        for other in self._store.shops.values():
            if other.code == code and other.shop_id != shop_id:
                raise ConflictError(f"code {code!r} is already taken", code="code_taken")


class TokenLedger:
    """Issued tokens, one per (shop, day, session) and one per (shop, day, number)."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def highest_sequence(self, shop_id: str, issue_date: str) -> int:
        with self._store.transaction() as st:
            day = st.day(shop_id, issue_date)
            return day.highest if day is not None else 0

    def find_by_session(self, shop_id: str, issue_date: str, session_id: str) -> TokenRecord | None:
        with self._store.transaction() as st:
            day = st.day(shop_id, issue_date)
            record = day.by_session.get(session_id) if day is not None else None
            return replace(record) if record is not None else None

    def insert(self, record: TokenRecord) -> None:
        if record.sequence_number < 1:
            raise ValueError("sequence_number must be >= 1")
        with self._store.transaction() as st:
            day = st.day(record.shop_id, record.issue_date)
            if day is not None:
                if record.session_id in day.by_session:
                    raise DuplicateError(f"session {record.session_id!r} already holds a token")
                if record.sequence_number in day.by_number:
                    raise DuplicateError(f"token {record.sequence_number} already issued")
            st.add_token(replace(record))

    def mark_expired_below(self, shop_id: str, issue_date: str, threshold: int) -> int:
        """Expire every token of the day numbered below ``threshold``.

        Returns how many tokens changed state.
        """
        count = 0
        with self._store.transaction() as st:
            day = st.day(shop_id, issue_date)
            if day is None:
                return 0
            for t in list(day.by_session.values()):
                if t.sequence_number < threshold and not t.expired:
                    st.replace_token(replace(t, expired=True))
                    count += 1
        return count

    def tokens_for(self, shop_id: str, issue_date: str) -> list[TokenRecord]:
        with self._store.transaction() as st:
            day = st.day(shop_id, issue_date)
            found = [replace(t) for t in day.by_session.values()] if day is not None else []
        found.sort(key=lambda t: t.sequence_number)
        return found


def _require_code(code: str) -> str:
    normalized = normalize_code(code)
    if not normalized:
        raise ValueError("code required")
    return normalized
