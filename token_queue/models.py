"""Domain records shared by the store, the state machine and the wire layer."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

CODE_MAX_LENGTH = 20

_INVALID_CODE_CHARS = re.compile(r"[^A-Z0-9-]")


def normalize_code(raw: str) -> str:
    """Canonical form of a user-entered shop code.

    Uppercased, trimmed, characters outside ``[A-Z0-9-]`` dropped and the
    result cut to ``CODE_MAX_LENGTH``. May return an empty string; callers
    that store a code reject that.
    """
    return _INVALID_CODE_CHARS.sub("", raw.strip().upper())[:CODE_MAX_LENGTH]


class SystemStatus(str, Enum):
    ACTIVE = "active"
    OWNER_CLOSED = "owner_closed"
    INACTIVE = "inactive"


@dataclass
class ShopConfig:
    shop_id: str
    owner_id: str
    code: str
    name: str
    serving_number: int = 0
    last_reset_date: str = ""
    is_open: bool = False


@dataclass
class TokenRecord:
    shop_id: str
    issue_date: str
    session_id: str
    sequence_number: int
    expired: bool = False

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.shop_id, self.issue_date, self.session_id)


@dataclass(frozen=True)
class TokenResult:
    """Outcome of a successful ``issue_token``."""

    shop_id: str
    session_id: str
    issue_date: str
    sequence_number: int
    already_issued: bool = False

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "token",
            "shop_id": self.shop_id,
            "session_id": self.session_id,
            "issue_date": self.issue_date,
            "token": self.sequence_number,
            "already_issued": self.already_issued,
        }


@dataclass(frozen=True)
class ServingResult:
    shop_id: str
    serving_number: int
    expired_count: int

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "serving_advanced",
            "shop_id": self.shop_id,
            "serving_number": self.serving_number,
            "expired_count": self.expired_count,
        }


@dataclass(frozen=True)
class QueueSnapshot:
    """What every display surface shows for one shop."""

    shop_id: str
    code: str
    name: str
    status: SystemStatus
    serving_number: int
    next_token: int
    is_open: bool
    days_remaining: int
    date_key: str

    def to_message(self) -> dict[str, Any]:
        msg = asdict(self)
        msg["status"] = self.status.value
        msg["type"] = "queue_state"
        return msg


@dataclass(frozen=True)
class TokenStanding:
    """A customer's token reconciled against the current serving number."""

    record: TokenRecord
    serving_number: int

    @property
    def tokens_ahead(self) -> int:
        return max(0, self.record.sequence_number - self.serving_number)

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "my_token",
            "shop_id": self.record.shop_id,
            "issue_date": self.record.issue_date,
            "token": self.record.sequence_number,
            "expired": self.record.expired,
            "serving_number": self.serving_number,
            "tokens_ahead": self.tokens_ahead,
        }
