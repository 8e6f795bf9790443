from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from quickscan.models import ScanJob


class LoggingCfg(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    dir: Path | None = None
    max_bytes: int = 5_000_000
    backups: int = 3


class ScanCfg(BaseModel):
    host: str = "127.0.0.1"
    range: str = "1-65535"
    threads: int = Field(default=1000, ge=1)
    timeout: float = Field(default=1.0, gt=0)
    max_addresses: int | None = Field(default=None, ge=1)

    def job_for(self, address: str) -> ScanJob:
        return ScanJob(
            target=address,
            ports=self.range,
            concurrency=self.threads,
            timeout=self.timeout,
        )


class ApiCfg(BaseModel):
    bind_host: str = "127.0.0.1"
    bind_port: int = 5000


class AppCfg(BaseModel):
    logging: LoggingCfg = Field(default_factory=LoggingCfg)
    scan: ScanCfg = Field(default_factory=ScanCfg)
    api: ApiCfg = Field(default_factory=ApiCfg)


def load_config(path: Path | None) -> AppCfg:
    data: dict[str, Any] = {}
    if path is not None and path.exists():
        data = yaml.safe_load(path.read_text()) or {}
    return AppCfg.model_validate(data)
