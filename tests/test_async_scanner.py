from __future__ import annotations

import asyncio
import socket
import time

import pytest

from fakes import fake_probe
from quickscan.async_scanner import ProbeWorkerPool, probe_port, resolve_address
from quickscan.channel import Channel
from quickscan.models import PortState, ProbeOutcome
from quickscan.ports import produce_ports


def run_pool(pool: ProbeWorkerPool, spec: str, cancel: asyncio.Event | None = None):
    async def run():
        stop = cancel or asyncio.Event()
        ports: Channel[int] = Channel()
        outcomes: Channel[ProbeOutcome] = Channel()
        producer = asyncio.create_task(produce_ports(spec, ports, stop))
        probing = asyncio.create_task(pool.run(ports, outcomes, stop))
        got = []
        while True:
            outcome, ok = await outcomes.recv(stop)
            if not ok:
                break
            got.append(outcome)
        await asyncio.gather(producer, probing)
        return got

    return asyncio.run(run())


def test_probe_open(listener: int) -> None:
    outcome = asyncio.run(probe_port("127.0.0.1", listener, 1.0))
    assert outcome == ProbeOutcome(listener, PortState.OPEN)


def test_probe_refused(closed_port: int) -> None:
    outcome = asyncio.run(probe_port("127.0.0.1", closed_port, 1.0))
    assert outcome == ProbeOutcome(closed_port, PortState.CLOSED)




@pytest.mark.parametrize("address,port", [("127.0.0.1", 70000), ("127.0.0.1", -1), ("no-such-host.invalid", 80)])
def test_probe_errors_are_closed(address: str, port: int) -> None:
    assert asyncio.run(probe_port(address, port, 1.0)).state is PortState.CLOSED


def test_pool_probes_each_port_once() -> None:
    seen = []
    pool = ProbeWorkerPool("192.0.2.1", 1.0, 8, probe=fake_probe(open_ports={3, 40}, seen=seen))
    got = run_pool(pool, "1-50")

    assert sorted(o.port for o in got) == list(range(1, 51))
    assert {o.port for o in got if o.is_open} == {3, 40}
    assert sorted(p for _, p in seen) == list(range(1, 51))
    assert pool.probed == 50


def test_pool_never_exceeds_concurrency() -> None:
    pool = ProbeWorkerPool("192.0.2.1", 1.0, 5, probe=fake_probe(delay=0.005))
    run_pool(pool, "1-100")
    assert 1 < pool.peak_in_flight <= 5
    assert pool.in_flight == 0


def test_pool_with_one_worker_keeps_production_order() -> None:
    pool = ProbeWorkerPool("192.0.2.1", 1.0, 1, probe=fake_probe())
    got = run_pool(pool, "9,1-3")
    assert [o.port for o in got] == [9, 1, 2, 3]


def test_pool_rejects_zero_workers() -> None:
    with pytest.raises(ValueError):
        ProbeWorkerPool("192.0.2.1", 1.0, 0)


def test_pool_stops_on_cancel() -> None:
    async def run() -> None:
        cancel = asyncio.Event()
        pool = ProbeWorkerPool("192.0.2.1", 1.0, 4, probe=fake_probe(open_ports=range(1, 65536), delay=0.02))
        ports: Channel[int] = Channel()
        outcomes: Channel[ProbeOutcome] = Channel()
        producer = asyncio.create_task(produce_ports("1-65535", ports, cancel))
        probing = asyncio.create_task(pool.run(ports, outcomes, cancel))

        outcome, ok = await outcomes.recv(cancel)
        assert ok
        cancel.set()

        await asyncio.wait_for(asyncio.gather(producer, probing), timeout=1.0)
        assert outcomes.closed
        assert pool.probed < 100
        await asyncio.sleep(0.01)
        assert asyncio.all_tasks() == {asyncio.current_task()}

    asyncio.run(run())


def test_probe_silent_peer_is_closed_within_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    async def never_answers(host, port):
        await asyncio.sleep(60)

    monkeypatch.setattr(asyncio, "open_connection", never_answers)
    start = time.perf_counter()
    outcome = asyncio.run(probe_port("127.0.0.1", 80, 0.2))
    assert outcome == ProbeOutcome(80, PortState.CLOSED)
    assert time.perf_counter() - start < 0.2 + 0.5


@pytest.mark.parametrize("address", ["127.0.0.1", "::1", "10.0.0.255"])
def test_ip_literals_are_not_looked_up(monkeypatch: pytest.MonkeyPatch, address: str) -> None:
    def no_dns(*args, **kwargs):
        raise AssertionError("unexpected lookup")

    monkeypatch.setattr(socket, "getaddrinfo", no_dns)
    assert asyncio.run(resolve_address(address)) == address


def test_host_name_is_resolved_once_per_scan(monkeypatch: pytest.MonkeyPatch, listener: int) -> None:
    calls = []
    real_getaddrinfo = socket.getaddrinfo

    def slow_getaddrinfo(host, *args, **kwargs):
        calls.append(host)
        time.sleep(0.05)
        return real_getaddrinfo("127.0.0.1", *args, **kwargs)

    monkeypatch.setattr(socket, "getaddrinfo", slow_getaddrinfo)
    pool = ProbeWorkerPool("scan-target.test", 0.5, 200)
    got = run_pool(pool, f"{listener - 300}-{listener}")

    assert calls.count("scan-target.test") == 1
    assert pool.resolved == "127.0.0.1"
    assert len(got) == 301
    assert [o.port for o in got if o.is_open] == [listener]


def test_unresolvable_host_reports_every_port_closed(monkeypatch: pytest.MonkeyPatch) -> None:
    def no_such_name(host, *args, **kwargs):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    monkeypatch.setattr(socket, "getaddrinfo", no_such_name)
    seen = []
    pool = ProbeWorkerPool("nowhere.test", 1.0, 4, probe=fake_probe(open_ports={3}, seen=seen))
    got = run_pool(pool, "1-10")

    assert sorted(o.port for o in got) == list(range(1, 11))
    assert not any(o.is_open for o in got)
    assert seen == []
    assert pool.probed == 0
