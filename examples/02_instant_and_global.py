#!/usr/bin/env python3
"""Instant and Global Events — Fan-out Across Instances.

Two instances share one Redis. A global event fires on both; an event
scoped to ``worker-a`` only fires there. Instant events skip the TTL path
and are pushed over the ``redular:instant`` pub/sub topic.

Run this example:
    REDULAR_REDIS_HOST=localhost python examples/02_instant_and_global.py
"""

import asyncio
from datetime import timedelta

from redular import Redular, get_settings, utc_now


def reporter(instance: str, event: str):
    def handler(payload):
        print(f"[{instance}] {event} {payload!r}")

    return handler


async def main() -> None:
    settings = get_settings()
    a = Redular(settings, id="worker-a", auto_config=True)
    b = Redular(settings, id="worker-b")

    for instance in (a, b):
        instance.define_handler("refresh", reporter(instance.client_id, "refresh"))
        instance.define_handler("hello", reporter(instance.client_id, "hello"))
        await instance.start()

    try:
        await a.instant_event("hello", is_global=True, payload={"from": "worker-a"})
        await a.instant_event("hello", payload="only me")

        soon = utc_now() + timedelta(seconds=2)
        await a.schedule_event("refresh", soon, is_global=True, payload="everyone")
        await a.schedule_event("refresh", soon, payload="worker-a only")

        await asyncio.sleep(4)
    finally:
        await a.close()
        await b.close()


if __name__ == "__main__":
    asyncio.run(main())
