"""Tests for the vast.ai CLI provisioning adapter."""

import json
import subprocess

import pytest

from workerfleet.instances.vast import VastProvisioner, _build_gpu_query, parse_instance_data
from workerfleet.utils.config import FleetSettings
from workerfleet.utils.exceptions import (
    InstanceNotFoundError,
    ProvisioningError,
    TeardownError,
)


class FakeVastCLI:
    """Stands in for subprocess.run; responses are keyed by the first two CLI words."""

    def __init__(self):
        self.calls = []
        self.responses = {}

    def respond(self, key, payload=None, returncode=0, stderr=""):
        stdout = payload if isinstance(payload, str) else json.dumps(payload)
        self.responses.setdefault(key, []).append((returncode, stdout, stderr))

    def __call__(self, command, capture_output=True, text=True, timeout=None):
        self.calls.append(command)
        key = tuple(command[1:3])
        queue = self.responses[key]
        returncode, stdout, stderr = queue.pop(0) if len(queue) > 1 else queue[0]
        return subprocess.CompletedProcess(command, returncode, stdout, stderr)


@pytest.fixture
def cli(monkeypatch):
    fake = FakeVastCLI()
    monkeypatch.setattr("workerfleet.instances.vast.subprocess.run", fake)
    return fake


@pytest.fixture
def vast():
    return VastProvisioner(
        FleetSettings(
            image="pytorch/pytorch",
            disk_gb=30,
            gpu_names=["RTX 3090", "RTX 4090"],
            max_price=0.4,
            provision_poll_interval=0,
        )
    )


INSTANCE = {
    "id": 4242,
    "actual_status": "running",
    "ssh_host": "ssh5.vast.ai",
    "ssh_port": 31022,
    "public_ipaddr": "203.0.113.7",
}


def test_gpu_query():
    assert _build_gpu_query([]) == ""
    assert _build_gpu_query(["RTX 3090"]) == "gpu_name=RTX_3090"
    assert _build_gpu_query(["RTX 3090", "A100"]) == "gpu_name in [RTX_3090,A100]"


def test_parse_instance_data_prefers_ssh_proxy():
    description = parse_instance_data(INSTANCE)

    assert description.instance_id == "4242"
    assert description.address == "ssh5.vast.ai"
    assert description.port == 31022
    assert description.is_running


def test_parse_instance_data_without_status():
    description = parse_instance_data({"id": 1, "public_ipaddr": "1.2.3.4"})

    assert description.state == "loading"
    assert not description.is_running
    assert description.address == "1.2.3.4"
    assert description.port is None


def test_intended_state_does_not_count_as_running():
    description = parse_instance_data(
        {"id": 1, "actual_status": None, "cur_state": "running", "intended_status": "running"}
    )

    assert description.state == "loading"
    assert not description.is_running


def test_await_running_waits_for_actual_status(cli, vast):
    cli.respond(("show", "instance"), {**INSTANCE, "actual_status": None, "cur_state": "running"})
    cli.respond(("show", "instance"), INSTANCE)

    description = vast.await_running("4242", timeout=5)

    assert description.is_running
    assert len(cli.calls) == 2


def test_create_rents_cheapest_offer(cli, vast):
    cli.respond(("search", "offers"), [{"id": 11, "dph_total": 0.3}, {"id": 12, "dph_total": 0.1}])
    cli.respond(("create", "instance"), {"success": True, "new_contract": 777})

    instance_id = vast.create()

    assert instance_id == "777"
    search, create = cli.calls
    assert search[:3] == ["vastai", "search", "offers"]
    assert "gpu_name in [RTX_3090,RTX_4090]" in search[3]
    assert "dph_total<=0.4" in search[3]
    assert create[:4] == ["vastai", "create", "instance", "12"]
    assert create[create.index("--image") + 1] == "pytorch/pytorch"
    assert create[create.index("--disk") + 1] == "30"
    assert "--raw" in create


def test_create_without_offers_fails(cli, vast):
    cli.respond(("search", "offers"), [])

    with pytest.raises(ProvisioningError, match="No offers"):
        vast.create()


def test_create_rejected_rental_fails(cli, vast):
    cli.respond(("search", "offers"), [{"id": 11, "dph_total": 0.3}])
    cli.respond(("create", "instance"), {"success": False, "msg": "no_such_ask"})

    with pytest.raises(ProvisioningError, match="Rental of offer 11 failed"):
        vast.create()


def test_cli_failure_is_a_provisioning_error(cli, vast):
    cli.respond(("search", "offers"), "", returncode=1, stderr="invalid api key")

    with pytest.raises(ProvisioningError, match="invalid api key"):
        vast.create()


def test_api_key_is_passed(cli):
    provisioner = VastProvisioner(FleetSettings(vast_api_key="secret"))
    cli.respond(("show", "instances"), [])

    provisioner.list_instances()

    assert cli.calls[0][-2:] == ["--api-key", "secret"]


def test_timeout_is_a_provisioning_error(monkeypatch, vast):
    def slow(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs.get("timeout"))

    monkeypatch.setattr("workerfleet.instances.vast.subprocess.run", slow)

    with pytest.raises(ProvisioningError, match="timed out"):
        vast.describe("1")


def test_describe(cli, vast):
    cli.respond(("show", "instance"), INSTANCE)

    description = vast.describe("4242")

    assert description.address == "ssh5.vast.ai"
    assert cli.calls[0][:4] == ["vastai", "show", "instance", "4242"]


def test_describe_missing_instance(cli, vast):
    cli.respond(("show", "instance"), "null")

    with pytest.raises(InstanceNotFoundError):
        vast.describe("4242")


def test_await_running_polls_until_running(cli, vast):
    cli.respond(("show", "instance"), {**INSTANCE, "actual_status": "loading"})
    cli.respond(("show", "instance"), INSTANCE)

    description = vast.await_running("4242", timeout=5)

    assert description.is_running
    assert len(cli.calls) == 2


def test_terminate(cli, vast):
    cli.respond(("destroy", "instance"), {"success": True})

    vast.terminate("4242")

    assert cli.calls[0][:4] == ["vastai", "destroy", "instance", "4242"]


def test_terminate_is_idempotent(cli, vast):
    cli.respond(("destroy", "instance"), "", returncode=1, stderr="instance not found")
    cli.respond(("show", "instance"), "null")

    vast.terminate("4242")
    vast.terminate("4242")


def test_terminate_failure_on_live_instance(cli, vast):
    cli.respond(("destroy", "instance"), "", returncode=1, stderr="rate limited")
    cli.respond(("show", "instance"), INSTANCE)

    with pytest.raises(TeardownError) as excinfo:
        vast.terminate("4242")

    assert excinfo.value.instance_id == "4242"
    assert "rate limited" in str(excinfo.value)


def test_list_instances(cli, vast):
    cli.respond(("show", "instances"), [INSTANCE, {**INSTANCE, "id": 4243}])

    instances = vast.list_instances()

    assert [i.instance_id for i in instances] == ["4242", "4243"]
