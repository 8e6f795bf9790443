from __future__ import annotations

import asyncio
from typing import AsyncIterator

from quickscan.channel import Channel
from quickscan.models import PortOpen, ProbeOutcome, ScanCompleted, ScanEvent, ScanStarted


async def collect(
    address: str,
    ports: str,
    outcomes: Channel[ProbeOutcome],
    cancel: asyncio.Event,
) -> AsyncIterator[ScanEvent]:
    """
    Forwards only open ports, in arrival order, between a start and a
    completion marker. The completion marker waits for the pool to close
    the outcome channel, even when the scan was cancelled.
    """
    yield ScanStarted(address, ports)

    found = 0
    while True:
        outcome, ok = await outcomes.recv(cancel)
        if not ok:
            break
        if outcome.is_open:
            found += 1
            yield PortOpen(address, outcome.port)

    await outcomes.wait_closed()
    yield ScanCompleted(address, found, cancelled=cancel.is_set())
