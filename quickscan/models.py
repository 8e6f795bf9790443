from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PortState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class ProbeOutcome:
    port: int
    state: PortState

    @property
    def is_open(self) -> bool:
        return self.state is PortState.OPEN


class ScanJob(BaseModel):
    """
    Unit of work for one concrete address.
    Built once per address and never mutated while the scan runs.
    """
    model_config = ConfigDict(frozen=True)

    target: str
    ports: str = "1-65535"
    concurrency: int = Field(default=1000, ge=1)
    timeout: float = Field(default=1.0, gt=0)


@dataclass(frozen=True)
class ScanStarted:
    address: str
    ports: str


@dataclass(frozen=True)
class PortOpen:
    address: str
    port: int


@dataclass(frozen=True)
class ScanCompleted:
    address: str
    open_ports: int
    cancelled: bool = False


ScanEvent = ScanStarted | PortOpen | ScanCompleted


class QuickScanError(Exception):
    pass


class TargetTooLarge(QuickScanError):
    def __init__(self, token: str, size: int, limit: int):
        super().__init__(f"{token} expands to {size} addresses (limit {limit})")
        self.token = token
        self.size = size
        self.limit = limit
