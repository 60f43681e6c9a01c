import json
import os

import pytest
import requests

from macpool import oplog
from macpool.errors import HardwareWriteExhausted, PoolExhausted
from macpool.models import Entry, Pool
from macpool.oplog import OperationLog, OperationRecord, ship_record, write_record
from macpool.provisioning import ProvisioningOrchestrator, ProvisioningSession
from macpool.provisioning.fakes import FakeDriverManager, FakeNetworkManager, FakeProgrammingTool, FakeSystemInfo
from macpool.storage import InMemoryPoolStorage

PW = "bench-password"
POOL = "pool"


def _storage(*addresses):
    store = InMemoryPoolStorage()
    pool = Pool.new("ops@bench")
    pool.entries = [Entry(a) for a in addresses]
    store.save(pool, PW, POOL)
    return store


def _session(store, network=None, **tool_kwargs):
    network = network or FakeNetworkManager(ips={"eth0": ["192.168.1.20/24"]})
    orchestrator = ProvisioningOrchestrator(
        FakeDriverManager(), FakeProgrammingTool(network, **tool_kwargs), network, sleep=lambda s: None
    )
    return ProvisioningSession(store, orchestrator, FakeSystemInfo(), OperationLog(), hostname="bench1")


def test_session_marks_and_persists():
    store = _storage("AA:BB:CC:00:00:01", "AA:BB:CC:00:00:02")
    session = _session(store)
    outcome = session.run(POOL, PW)

    assert outcome.entry.address == "AA:BB:CC:00:00:01"
    assert outcome.result.succeeded
    pool = store.load(POOL, PW)
    entry = pool.find("AA:BB:CC:00:00:01")
    assert entry.used and entry.used_at and entry.used_by == "bench1 on eth0"
    assert not pool.find("AA:BB:CC:00:00:02").used

    record = outcome.record
    assert record.success and record.action_performed == "MAC address update"
    assert record.product_name == "Test Board"
    assert record.host_info["hostname"] == "testhost"
    assert session.oplog.records == [record]


def test_session_satisfied_still_marks_used():
    store = _storage("AA:BB:CC:00:00:01", "AA:BB:CC:00:00:02")
    network = FakeNetworkManager(links={"eth0": "aa:bb:cc:00:00:01"}, ips={"eth0": ["192.168.1.20/24"]})
    session = _session(store, network=network)
    outcome = session.run(POOL, PW)

    assert outcome.result.satisfied
    assert session.orchestrator.tool.writes == []
    assert network.calls == []
    entry = store.load(POOL, PW).find("AA:BB:CC:00:00:01")
    assert entry.used and entry.used_by == "bench1 on eth0"
    assert outcome.record.success and outcome.record.action_performed == "No changes required"


def test_session_failure_leaves_pool_untouched():
    store = _storage("AA:BB:CC:00:00:01")
    writes = store.writes
    session = _session(store, always_fail=True)

    with pytest.raises(HardwareWriteExhausted):
        session.run(POOL, PW)

    assert store.writes == writes
    assert not store.load(POOL, PW).find("AA:BB:CC:00:00:01").used
    [record] = session.oplog.records
    assert not record.success
    assert record.action_performed == "MAC address update failed"


def test_session_exhausted_pool():
    session = _session(_storage())
    with pytest.raises(PoolExhausted):
        session.run(POOL, PW)
    assert session.oplog.records == []


def test_record_filename_is_safe():
    record = OperationRecord("X12 / Bench", "AA:BB:CC:00:00:01", "MAC address update", True)
    name = record.filename(when=0)
    assert name.startswith("X12_Bench_MAC-AABBCC000001_")
    assert name.endswith(".json")
    assert "/" not in name


def test_write_record(tmp_path):
    record = OperationRecord("Board", "AA:BB:CC:00:00:01", "No changes required", True,
                             system_info={"Handle 1": {"Product Name": "Board"}})
    path = write_record(record, str(tmp_path / "logs"))
    assert path and os.path.dirname(path) == str(tmp_path / "logs")
    with open(path) as f:
        data = json.load(f)
    assert data["mac_address"] == "AA:BB:CC:00:00:01"
    assert data["success"] is True
    assert data["system_info"]["Handle 1"]["Product Name"] == "Board"


def test_write_record_falls_back_to_parent(tmp_path):
    blocker = tmp_path / "logs"
    blocker.write_text("a file, not a directory")
    record = OperationRecord("Board", "AA:BB:CC:00:00:01", "MAC address update", True)
    path = write_record(record, str(blocker))
    assert os.path.dirname(path) == str(tmp_path)


class _Response:
    def __init__(self, status_code=200):
        self.status_code = status_code
        self.ok = status_code < 400
        self.reason = "OK" if self.ok else "Server Error"


def test_ship_record(monkeypatch):
    sent = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.update(url=url, json=json, headers=headers, timeout=timeout)
        return _Response()

    monkeypatch.setattr(oplog.requests, "post", fake_post)
    record = OperationRecord("Board", "AA:BB:CC:00:00:01", "MAC address update", True)
    assert ship_record(record, "http://collector.local/logs")
    assert sent["json"]["product_name"] == "Board"
    assert sent["headers"]["X-Log-Filename"].startswith("Board_MAC-AABBCC000001_")
    assert sent["timeout"] == 5


@pytest.mark.parametrize("outcome", ["error", "status"])
def test_ship_record_failures_are_soft(monkeypatch, outcome):
    def fake_post(url, **kwargs):
        if outcome == "error":
            raise requests.ConnectionError("refused")
        return _Response(500)

    monkeypatch.setattr(oplog.requests, "post", fake_post)
    record = OperationRecord("Board", "AA:BB:CC:00:00:01", "MAC address update", True)
    assert ship_record(record, "http://collector.local/logs") is False


def test_operation_log_emits_to_both_sinks(tmp_path, monkeypatch):
    posted = []
    monkeypatch.setattr(oplog.requests, "post", lambda url, **kw: posted.append(url) or _Response())
    log = OperationLog(log_dir=str(tmp_path), url="http://collector.local/logs")
    log.emit(OperationRecord("Board", "AA:BB:CC:00:00:01", "MAC address update", True))
    assert posted == ["http://collector.local/logs"]
    assert len(list(tmp_path.iterdir())) == 1
