"""Daily token queue for shops (MQTT-based).

A shop owner opens the queue during the distribution period (1st-15th of the
month), customers take a sequential token through the shop code, and the owner
advances the "now serving" counter. Components:

- a Token Service holding the queue state machine and the store
- customer and owner clients talking to it over MQTT request/response
- observers following a shop's live "now serving" updates

See README for how to run.
"""
from __future__ import annotations
