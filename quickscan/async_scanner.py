from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable, List, Optional

from quickscan.channel import Channel
from quickscan.models import PortState, ProbeOutcome

log = logging.getLogger(__name__)

Probe = Callable[[str, int, float], Awaitable[ProbeOutcome]]


async def probe_port(address: str, port: int, timeout: float) -> ProbeOutcome:
    """
    One TCP connect attempt bounded by `timeout` seconds.
    Any failure (refused, timeout, unreachable, DNS) counts as closed.
    """
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(address, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError, OverflowError, ValueError) as e:
        log.debug("%s:%d closed (%s)", address, port, type(e).__name__)
        return ProbeOutcome(port, PortState.CLOSED)

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return ProbeOutcome(port, PortState.OPEN)


async def resolve_address(address: str) -> Optional[str]:
    """
    Looks a host name up once per scan so the workers connect to a literal
    address instead of querying DNS for every port.
    IP literals come back unchanged; None when the lookup fails.
    """
    try:
        ipaddress.ip_address(address)
        return address
    except ValueError:
        pass

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(address, None, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError) as e:
        log.warning("could not resolve %s (%s), every port will be reported closed", address, e)
        return None
    if not infos:
        return None
    return infos[0][4][0]


class ProbeWorkerPool:
    """
    Exactly `concurrency` workers sharing one port channel.

    Each worker claims a port, probes it and hands the outcome to `outcomes`.
    The outcome channel is closed only after every worker has returned.
    `in_flight` / `peak_in_flight` count probes that have started but not
    finished.
    """

    def __init__(
        self,
        address: str,
        timeout: float,
        concurrency: int,
        probe: Probe = probe_port,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.address = address
        self.resolved: Optional[str] = None
        self.timeout = timeout
        self.concurrency = concurrency
        self.probe = probe
        self.in_flight = 0
        self.peak_in_flight = 0
        self.probed = 0

    async def worker(self, ports: Channel, outcomes: Channel, cancel: asyncio.Event) -> None:
        while True:
            port, ok = await ports.recv(cancel)
            if not ok:  # ports exhausted or scan cancelled
                return

            if self.resolved is None:
                # Unresolvable host: every port is closed, nothing to connect to
                outcome = ProbeOutcome(port, PortState.CLOSED)
            else:
                self.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
                try:
                    outcome = await self.probe(self.resolved, port, self.timeout)
                finally:
                    self.in_flight -= 1
                self.probed += 1

            if not await outcomes.send(outcome, cancel):
                return

    async def run(self, ports: Channel, outcomes: Channel, cancel: asyncio.Event) -> None:
        workers: List[asyncio.Task] = []
        try:
            # 1. One lookup per address; workers only ever see a literal IP
            self.resolved = await resolve_address(self.address)

            # 2. Fixed pool of workers over the shared port channel
            workers = [
                asyncio.create_task(self.worker(ports, outcomes, cancel))
                for _ in range(self.concurrency)
            ]
            await asyncio.gather(*workers)
        finally:
            # 3. Nothing may outlive the pool; only then is the output closed
            for w in workers:
                if not w.done():
                    w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            outcomes.close()
            log.debug("pool for %s done: %d ports probed", self.address, self.probed)
