from __future__ import annotations

import ipaddress
import logging
from pathlib import Path
from typing import List, Optional

from quickscan.models import TargetTooLarge

log = logging.getLogger(__name__)


def expand_target(token: str, max_addresses: Optional[int] = None) -> List[str]:
    """
    Turns one token into the concrete addresses to scan.

    - CIDR block ("192.168.1.0/30"): every address in the block, ascending,
      network and broadcast included. Host bits are masked off first.
    - Anything else, including a malformed CIDR: the token itself.
    """
    if "/" not in token:
        return [token]

    # Only "<addr>/<prefix length>"; netmask forms like "/255.255.255.0" stay literal hosts
    _, _, prefix = token.rpartition("/")
    if not (prefix.isascii() and prefix.isdigit()):
        log.debug("not a CIDR block, scanning as a host: %s", token)
        return [token]

    try:
        network = ipaddress.ip_network(token, strict=False)
    except ValueError:
        log.debug("not a CIDR block, scanning as a host: %s", token)
        return [token]

    if max_addresses is not None and network.num_addresses > max_addresses:
        raise TargetTooLarge(token, network.num_addresses, max_addresses)

    return [str(ip) for ip in network]


def read_targets_file(path: Path) -> List[str]:
    """One host, IP or CIDR per line; blank lines ignored. I/O errors propagate."""
    tokens: List[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        tokens.append(line)
    return tokens
