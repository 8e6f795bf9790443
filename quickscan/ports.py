from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterator

from quickscan.channel import Channel

log = logging.getLogger(__name__)

_INT = re.compile(r"[+-]?[0-9]+")


def _parse_int(s: str) -> int:
    if not _INT.fullmatch(s):
        raise ValueError(f"not an integer: {s!r}")
    return int(s)


def iter_port_spec(spec: str) -> Iterator[int]:
    """
    Lazily expands a spec like "80,443,1000-2000" in declared order.

    A block with a bad bound is logged and skipped. "10-5" yields nothing.
    Ports are not checked against 1-65535.
    """
    for block in spec.split(","):
        fields = block.split("-")
        try:
            first = _parse_int(fields[0])
            last = first if len(fields) == 1 else _parse_int(fields[1])
        except ValueError:
            log.warning("error parsing port range block: %s", block)
            continue
        yield from range(first, last + 1)


async def produce_ports(spec: str, out: Channel, cancel: asyncio.Event) -> None:
    """
    Feeds ports one at a time into `out` and closes it when done.
    Stops quietly at the first hand-off interrupted by `cancel`.
    """
    try:
        for port in iter_port_spec(spec):
            if not await out.send(port, cancel):
                return
    finally:
        out.close()
