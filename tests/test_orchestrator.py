import pytest

from macpool.config import ProvisioningSettings
from macpool.errors import DriverLoadFailure, HardwareWriteExhausted, InterfaceNotFound, InvalidAddress
from macpool.provisioning import ProvisioningOrchestrator, ProvisioningRequest, ProvisioningState
from macpool.provisioning.fakes import FakeDriverManager, FakeNetworkManager, FakeProgrammingTool

TARGET = "AA:BB:CC:00:00:01"
OLD_IP = "192.168.1.20/24"


class Rig:
    """One fake machine with its orchestrator and a recorded sleep."""

    def __init__(self, settings=None, driver=None, network=None, **tool_kwargs):
        self.network = network or FakeNetworkManager(ips={"eth0": [OLD_IP]})
        self.driver = driver or FakeDriverManager()
        self.tool = FakeProgrammingTool(self.network, **tool_kwargs)
        self.sleeps = []
        self.orchestrator = ProvisioningOrchestrator(
            self.driver, self.tool, self.network, settings=settings, sleep=self.sleeps.append
        )

    def provision(self, address=TARGET):
        return self.orchestrator.provision(ProvisioningRequest(address=address, product_name="Board", hostname="h1"))


def test_satisfied_twice_without_writing():
    rig = Rig(network=FakeNetworkManager(links={"eth0": TARGET.lower()}, ips={"eth0": [OLD_IP]}))
    for _ in range(2):
        result = rig.provision()
        assert result.state == ProvisioningState.SATISFIED
        assert result.history == [ProvisioningState.CHECK_EXISTING, ProvisioningState.SATISFIED]
        assert result.interfaces == ["eth0"]
        assert result.action == "No changes required"
    assert rig.tool.writes == []
    assert rig.driver.loads == 0
    assert rig.network.calls == []


def test_write_then_restore():
    rig = Rig()
    result = rig.provision("aa-bb-cc-00-00-01")

    assert result.succeeded and result.wrote
    assert result.state == ProvisioningState.DONE
    assert result.history == [
        ProvisioningState.CHECK_EXISTING,
        ProvisioningState.NEEDS_WRITE,
        ProvisioningState.DRIVER_LOAD,
        ProvisioningState.WRITE_ATTEMPT,
        ProvisioningState.WRITTEN,
        ProvisioningState.VERIFY_INTERFACE,
        ProvisioningState.RESTORE_NETWORK,
        ProvisioningState.DONE,
    ]
    assert rig.tool.writes == ["AABBCC000001"]
    assert result.interfaces == ["eth0"]
    assert result.previous.ip == OLD_IP
    assert result.restored_interface == "eth0"
    assert result.action == "MAC address update"
    assert rig.driver.releases == 1
    assert rig.network.calls == [
        ("down", "eth0"),
        ("flush", "eth0"),
        ("set_address", "eth0", TARGET),
        ("up", "eth0"),
        ("add_ip", "eth0", OLD_IP),
    ]
    assert rig.sleeps == []

    # second run finds the address and does nothing
    again = rig.provision()
    assert again.satisfied
    assert len(rig.tool.writes) == 1


def test_always_failing_tool_is_bounded():
    rig = Rig(always_fail=True)
    with pytest.raises(HardwareWriteExhausted) as exc:
        rig.provision()

    assert len(rig.tool.writes) == 3
    assert rig.sleeps == [1.0, 1.0]
    assert rig.driver.recompiles == 1
    assert rig.driver.releases == 0
    result = exc.value.result
    assert result.state == ProvisioningState.EXHAUSTED
    assert result.history.count(ProvisioningState.WRITE_ATTEMPT) == 3
    assert exc.value.attempts == 3
    assert "power" in str(exc.value).lower()


def test_retry_bound_follows_settings():
    rig = Rig(settings=ProvisioningSettings(max_write_attempts=5, write_backoff=0.25), always_fail=True)
    with pytest.raises(HardwareWriteExhausted):
        rig.provision()
    assert len(rig.tool.writes) == 5
    assert rig.sleeps == [0.25] * 4


def test_write_succeeds_after_one_failure():
    rig = Rig(failures=1)
    result = rig.provision()
    assert result.write_attempts == 2
    assert result.driver_recompiled
    assert rig.sleeps == [1.0]
    assert result.state == ProvisioningState.DONE


def test_driver_recompiled_when_first_load_fails():
    rig = Rig(driver=FakeDriverManager(load_failures=1))
    result = rig.provision()
    assert result.driver_recompiled
    assert rig.driver.recompiles == 1
    assert rig.driver.loads == 2


@pytest.mark.parametrize("driver", [
    FakeDriverManager(load_failures=2),
    FakeDriverManager(load_failures=1, recompile_fails=True),
])
def test_driver_failure_after_recompile_is_fatal(driver):
    rig = Rig(driver=driver)
    with pytest.raises(DriverLoadFailure) as exc:
        rig.provision()
    assert rig.tool.writes == []
    assert exc.value.result.state == ProvisioningState.DRIVER_LOAD


def test_written_address_not_visible():
    rig = Rig(burns=False)
    with pytest.raises(InterfaceNotFound) as exc:
        rig.provision()
    assert exc.value.result.state == ProvisioningState.VERIFY_INTERFACE
    assert rig.driver.releases == 1


def test_restore_failure_is_a_warning():
    rig = Rig(network=FakeNetworkManager(ips={"eth0": [OLD_IP]}, add_ip_failures=3))
    result = rig.provision()
    assert result.state == ProvisioningState.DONE
    assert result.restored_interface is None
    assert rig.sleeps == [0.5, 0.5]
    assert [c for c in rig.network.calls if c[0] == "add_ip"] == [("add_ip", "eth0", OLD_IP)] * 3
    assert any(OLD_IP in w for w in result.warnings)


def test_already_assigned_ip_counts_as_restored():
    rig = Rig(network=FakeNetworkManager(ips={"eth0": [OLD_IP]}, add_ip_failures=1, keep_ip_on_failure=True))
    result = rig.provision()
    assert result.restored_interface == "eth0"
    assert rig.sleeps == []
    assert result.warnings == []


def test_no_active_interface_skips_restore():
    rig = Rig(network=FakeNetworkManager())
    result = rig.provision()
    assert result.state == ProvisioningState.DONE
    assert result.previous is None
    assert rig.network.calls == []
    assert result.warnings


def test_multiple_matching_interfaces_prefers_previous_name():
    class TwoPortTool(FakeProgrammingTool):
        def write(self, address_hex):
            self.writes.append(address_hex)
            for name in ("eth0", "eth1"):
                self.network.burn(TARGET, name)

    network = FakeNetworkManager(links={"eth0": "00:00:00:00:00:01", "eth1": "00:00:00:00:00:02"},
                                 ips={"eth1": [OLD_IP]})
    orchestrator = ProvisioningOrchestrator(FakeDriverManager(), TwoPortTool(network), network, sleep=lambda s: None)
    result = orchestrator.provision(ProvisioningRequest(address=TARGET))
    assert result.interfaces == ["eth0", "eth1"]
    assert result.restored_interface == "eth1"
    assert result.warnings == []


def test_multiple_matching_interfaces_without_previous_match():
    class TwoPortTool(FakeProgrammingTool):
        def write(self, address_hex):
            for name in ("eth0", "eth1"):
                self.network.burn(TARGET, name)

    network = FakeNetworkManager(links={"eth0": "00:00:00:00:00:01", "eth1": "00:00:00:00:00:02"},
                                 ips={"wlan0": ["10.0.0.5/24"]})
    orchestrator = ProvisioningOrchestrator(FakeDriverManager(), TwoPortTool(network), network, sleep=lambda s: None)
    result = orchestrator.provision(ProvisioningRequest(address=TARGET))
    assert result.restored_interface == "eth0"
    assert any("Multiple interfaces" in w for w in result.warnings)


def test_invalid_address_rejected():
    with pytest.raises(InvalidAddress):
        Rig().provision("not-a-mac")
