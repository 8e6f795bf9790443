from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError

from quickscan.config import ScanCfg
from quickscan.models import PortOpen, ScanCompleted, ScanStarted, TargetTooLarge
from quickscan.orchestrator import ScanOrchestrator
from quickscan.targets import expand_target

log = logging.getLogger(__name__)

# query parameter -> ScanCfg field
_SCAN_PARAMS = {"host": "host", "range": "range", "threads": "threads", "timeout": "timeout"}


async def run_scan(cfg: ScanCfg, tokens: List[str]) -> List[Dict[str, Any]]:
    results: List[Dict[str, Any]] = []
    current: Dict[str, Any] = {}
    orchestrator = ScanOrchestrator(cfg)
    async with aclosing(orchestrator.run(tokens)) as events:
        async for event in events:
            if isinstance(event, ScanStarted):
                current = {"address": event.address, "open_ports": [], "cancelled": False}
            elif isinstance(event, PortOpen):
                current["open_ports"].append(event.port)
            elif isinstance(event, ScanCompleted):
                current["open_ports"].sort()
                current["cancelled"] = event.cancelled
                results.append(current)
    return results


def create_app(cfg: Optional[ScanCfg] = None) -> Flask:
    app = Flask(__name__)
    base = cfg or ScanCfg()

    @app.route("/")
    async def home():
        return "Welcome to QuickScan! Use /scan?host=<target> to scan."

    @app.route("/expand", methods=["GET"])
    async def expand():
        token = request.args.get("target")
        if not token:
            return jsonify({"error": "missing 'target' parameter"}), 400
        try:
            addresses = expand_target(token, base.max_addresses)
        except TargetTooLarge as e:
            return jsonify({"error": str(e)}), 413
        return jsonify({"target": token, "addresses": addresses})

    @app.route("/scan", methods=["GET"])
    async def scan():
        if not request.args.get("host"):
            return jsonify({"error": "missing 'host' parameter"}), 400

        overrides = {
            field: request.args[param]
            for param, field in _SCAN_PARAMS.items()
            if param in request.args
        }
        try:
            scan_cfg = ScanCfg.model_validate({**base.model_dump(), **overrides})
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400

        try:
            expand_target(scan_cfg.host, scan_cfg.max_addresses)
        except TargetTooLarge as e:
            return jsonify({"error": str(e)}), 413

        log.info("api scan of %s ports=%s", scan_cfg.host, scan_cfg.range)
        results = await run_scan(scan_cfg, [scan_cfg.host])
        return jsonify({"results": results})

    return app


app = create_app()
