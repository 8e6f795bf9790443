from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from quickscan.config import LoggingCfg


def setup_logging(cfg: LoggingCfg, name: str) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.level))

    fmt = logging.Formatter(
        fmt="%(asctime)sZ %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(sh)

    if cfg.dir is not None:
        cfg.dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            Path(cfg.dir) / f"{name}.log",
            maxBytes=cfg.max_bytes,
            backupCount=cfg.backups,
            encoding="utf-8",
        )
        fh.setFormatter(fmt)
        root.addHandler(fh)

    return logging.getLogger(name)
