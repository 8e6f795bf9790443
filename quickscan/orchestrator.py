from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from enum import Enum
from typing import AsyncIterator, Iterable, Optional

from quickscan.aggregator import collect
from quickscan.async_scanner import Probe, ProbeWorkerPool, probe_port
from quickscan.channel import Channel
from quickscan.config import ScanCfg
from quickscan.models import ProbeOutcome, ScanJob, ScanEvent, TargetTooLarge
from quickscan.ports import produce_ports
from quickscan.targets import expand_target

log = logging.getLogger(__name__)


async def scan_job(
    job: ScanJob,
    cancel: asyncio.Event,
    probe: Probe = probe_port,
) -> AsyncIterator[ScanEvent]:
    """Producer, worker pool and aggregator for one address, run concurrently."""
    ports: Channel[int] = Channel()
    outcomes: Channel[ProbeOutcome] = Channel()
    pool = ProbeWorkerPool(job.target, job.timeout, job.concurrency, probe)

    # Producer and pool run as tasks; the aggregator is driven by whoever iterates us
    producer = asyncio.create_task(produce_ports(job.ports, ports, cancel))
    probing = asyncio.create_task(pool.run(ports, outcomes, cancel))
    try:
        async with aclosing(collect(job.target, job.ports, outcomes, cancel)) as events:
            async for event in events:
                yield event
        await asyncio.gather(producer, probing)
    finally:
        for t in (producer, probing):
            if not t.done():
                t.cancel()
        await asyncio.gather(producer, probing, return_exceptions=True)


class ScanState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLED = "cancelled"


class ScanOrchestrator:
    """
    Scans targets one after another, one address at a time.

    One orchestrator per invocation: it owns the cancellation event shared
    by every stage. Once cancel() is called the current address winds down
    within one probe timeout and the remaining targets are skipped.
    """

    def __init__(self, cfg: ScanCfg, probe: Probe = probe_port, cancel: Optional[asyncio.Event] = None):
        self.cfg = cfg
        self.probe = probe
        self.cancel_event = cancel if cancel is not None else asyncio.Event()
        self.state = ScanState.IDLE

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    async def run(self, tokens: Iterable[str]) -> AsyncIterator[ScanEvent]:
        self.state = ScanState.RUNNING
        try:
            for token in tokens:
                if self.cancelled:
                    break
                # 1. Token -> addresses; an oversized block is skipped, not fatal
                try:
                    addresses = expand_target(token, self.cfg.max_addresses)
                except TargetTooLarge as e:
                    log.error("skipping target: %s", e)
                    continue

                # 2. One address at a time, never overlapping
                for address in addresses:
                    if self.cancelled:
                        break
                    job = self.cfg.job_for(address)
                    log.info("scanning %s ports=%s threads=%d timeout=%.2fs",
                             address, job.ports, job.concurrency, job.timeout)
                    async with aclosing(scan_job(job, self.cancel_event, self.probe)) as events:
                        async for event in events:
                            yield event
        finally:
            self.state = ScanState.CANCELLED if self.cancelled else ScanState.IDLE
