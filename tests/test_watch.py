from token_queue.service import MqttTokenService
from token_queue.watch import ServingWatcher


class LoopbackMqtt:
    """Answers requests straight from an in-process service."""

    client_id = "watch-test"

    def __init__(self, service: MqttTokenService) -> None:
        self.service = service
        self.subscriptions = []
        self.handlers = []
        self.requests = 0

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def add_handler(self, handler):
        self.handlers.append(handler)

    def request(self, *, request_topic, response_topic, message, timeout=5.0):
        self.requests += 1
        return self.service.handle_request(message)


def make_watcher(mqtt, machine, capsys):
    machine.configure_shop("o1", "SHOP-001", "City")
    service = MqttTokenService(mqtt=mqtt, namespace="t", machine=machine)
    loop = LoopbackMqtt(service)
    watcher = ServingWatcher(mqtt=loop, namespace="t", code="shop-001")
    state = watcher.start()
    capsys.readouterr()
    return watcher, loop, state


def test_watcher_follows_complete_updates(mqtt, machine, capsys):
    watcher, loop, state = make_watcher(mqtt, machine, capsys)
    assert f"t/shops/{state['shop_id']}/updates" in loop.subscriptions

    watcher.on_update("t", {"type": "shop_update", "shop_id": state["shop_id"], "serving_number": 3, "is_open": True})
    assert "now serving 3" in capsys.readouterr().out

    # Redelivery prints nothing.
    watcher.on_update("t", {"type": "shop_update", "shop_id": state["shop_id"], "serving_number": 3, "is_open": True})
    assert capsys.readouterr().out == ""


def test_watcher_rereads_on_partial_update(mqtt, machine, capsys):
    watcher, loop, state = make_watcher(mqtt, machine, capsys)
    before = loop.requests

    watcher.on_update("t", {"type": "shop_update", "shop_id": state["shop_id"]})
    watcher.poll(timeout=0.01)

    assert loop.requests == before + 1
    assert not watcher.view.needs_reread(state["shop_id"])
    assert "now serving 0" in capsys.readouterr().out


def test_watcher_ignores_other_shops(mqtt, machine, capsys):
    watcher, _loop, _state = make_watcher(mqtt, machine, capsys)
    watcher.on_update("t", {"type": "shop_update", "shop_id": "other", "serving_number": 9, "is_open": True})
    assert capsys.readouterr().out == ""
