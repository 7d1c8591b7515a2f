#!/usr/bin/env python3
"""Simple Schedule — Delayed Events on Redis Key Expiry.

================================================================================
HOW IT WORKS
================================================================================

Scheduling an event writes a marker key whose TTL is the delay::

    SET redular:<instance>:goodbye:<id>  <instance>  EX 6

Six seconds later Redis deletes the key and announces it on
``__keyevent@0__:expired``. Every Redular instance subscribed to that
channel decodes the key name and runs the handler for ``goodbye`` if the
event was addressed to it (or to ``global``)::

    schedule_event("test", +3s, payload="Foo")   ──▶  handler("Foo")   @ +3s
    schedule_event("test", +5s, payload="Bar")   ──▶  handler("Bar")   @ +5s
    schedule_event("goodbye", +6s)               ──▶  "Goodbye!"       @ +6s


================================================================================
PREREQUISITES
================================================================================

A Redis 7+ server. ``auto_config=True`` sets ``notify-keyspace-events`` to
include ``Ex`` on start; on managed Redis where CONFIG is disabled, enable
it in the provider's console instead.

Run this example:
    REDULAR_REDIS_HOST=localhost python examples/01_simple_schedule.py

See Also:
    - :mod:`redular.scheduler` — the Redular facade
    - :mod:`redular.settings` — REDULAR_* environment variables
"""

import asyncio
from datetime import timedelta

from redular import Redular, configure_logging, get_settings, utc_now


async def main() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=False)

    redular = Redular(settings, auto_config=True)
    done = asyncio.Event()

    def goodbye(payload):
        print("Goodbye!")
        done.set()

    redular.define_handler("goodbye", goodbye)
    redular.define_handler("test", print)

    await redular.start()
    try:
        now = utc_now()
        await redular.schedule_event("goodbye", now + timedelta(seconds=6))
        await redular.schedule_event("test", now + timedelta(seconds=5), payload="Bar")
        await redular.schedule_event("test", now + timedelta(seconds=3), payload="Foo")

        pending = await redular.get_events(now, now + timedelta(minutes=1))
        print(f"{len(pending)} events pending")

        await asyncio.wait_for(done.wait(), timeout=30)
        await redular.prune_data()
    finally:
        await redular.close()


if __name__ == "__main__":
    asyncio.run(main())
