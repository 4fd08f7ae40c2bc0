from datetime import datetime

import pytest

from token_queue.machine import QueueStateMachine
from token_queue.store import MemoryStore


class FakeClock:
    def __init__(self, when: datetime) -> None:
        self.when = when

    def __call__(self) -> datetime:
        return self.when


class FakeMqtt:
    """Records what a service publishes; no broker involved."""

    def __init__(self, client_id: str = "fake") -> None:
        self.client_id = client_id
        self.subscriptions: list[str] = []
        self.handlers = []
        self.published: list[tuple[str, dict]] = []

    def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)

    def add_handler(self, handler) -> None:
        self.handlers.append(handler)

    def publish(self, topic: str, message: dict) -> None:
        self.published.append((topic, message))


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 5, 9, 30))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def machine(store, clock):
    return QueueStateMachine(store, now=clock)


@pytest.fixture
def shop(machine):
    return machine.configure_shop("owner-1", "shop-001", "City Grocery")


@pytest.fixture
def open_shop(machine, shop):
    machine.set_open(shop.shop_id, True)
    machine.drain_updates()
    return shop


@pytest.fixture
def mqtt():
    return FakeMqtt()
