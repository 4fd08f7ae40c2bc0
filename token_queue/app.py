from __future__ import annotations

# Single entrypoint.
#
#     python -m token_queue.app serve
#     python -m token_queue.app owner configure --owner-id alice --code SHOP-001 --name "City Grocery"
#     python -m token_queue.app owner open --owner-id alice
#     python -m token_queue.app customer --code shop-001
#     python -m token_queue.app owner next --owner-id alice
#     python -m token_queue.app watch --code SHOP-001

import argparse
import logging
import sys

from .mqtt_topics import DEFAULT_NAMESPACE
from .owner import ACTIONS


def main() -> None:
    parser = argparse.ArgumentParser(description="Daily Token Queue (MQTT) - main entrypoint")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_mqtt_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--mqtt-host", default="127.0.0.1")
        p.add_argument("--mqtt-port", type=int, default=1883)
        p.add_argument("--namespace", default=DEFAULT_NAMESPACE)

    p_serve = sub.add_parser("serve", help="Start the token service")
    add_mqtt_args(p_serve)

    p_cust = sub.add_parser("customer", help="Take (or check) today's token for a shop code")
    add_mqtt_args(p_cust)
    p_cust.add_argument("--code", required=True)
    p_cust.add_argument("--check", action="store_true")
    p_cust.add_argument("--session-file", default=None)

    p_owner = sub.add_parser("owner", help="Owner actions: state, configure, open, close, next")
    add_mqtt_args(p_owner)
    p_owner.add_argument("action", choices=ACTIONS)
    p_owner.add_argument("--owner-id", required=True)
    p_owner.add_argument("--code", default=None)
    p_owner.add_argument("--name", default=None)

    p_watch = sub.add_parser("watch", help="Follow a shop's now-serving number")
    add_mqtt_args(p_watch)
    p_watch.add_argument("--code", required=True)

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    mqtt_args = ["--mqtt-host", args.mqtt_host, "--mqtt-port", str(args.mqtt_port), "--namespace", args.namespace]

    if args.cmd == "serve":
        from .service import main as run

        _dispatch_to_module_main(run, mqtt_args)
        return

    if args.cmd == "customer":
        from .customer import main as run

        run_args = ["--code", args.code, *mqtt_args]
        if args.check:
            run_args += ["--check"]
        if args.session_file:
            run_args += ["--session-file", args.session_file]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "owner":
        from .owner import main as run

        run_args = [args.action, "--owner-id", args.owner_id, *mqtt_args]
        if args.code is not None:
            run_args += ["--code", args.code]
        if args.name is not None:
            run_args += ["--name", args.name]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "watch":
        from .watch import main as run

        _dispatch_to_module_main(run, ["--code", args.code, *mqtt_args])
        return


def _dispatch_to_module_main(module_main, argv: list[str]) -> None:
    old_argv = sys.argv[:]
    try:
        sys.argv = [old_argv[0], *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    main()
