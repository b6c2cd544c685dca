import threading
import time

import pytest

from workerfleet.instances.provisioner import InstanceDescription
from workerfleet.orchestration.manager import Manager
from workerfleet.utils.config import ENV_KEYS, FleetSettings
from workerfleet.utils.exceptions import (
    InstanceNotFoundError,
    ProvisioningError,
    ProvisioningTimeout,
    TeardownError,
)


class FakeProvisioner:
    """In-memory provisioner.

    ``fail_creates`` / ``fail_await`` are 1-indexed create call numbers;
    ``fail_terminate`` holds instance ids whose termination fails.
    """

    def __init__(self, fail_creates=(), fail_await=(), fail_terminate=(), delay=0.0):
        self.fail_creates = set(fail_creates)
        self.fail_await = set(fail_await)
        self.fail_terminate = set(fail_terminate)
        self.delay = delay
        self.instances = {}
        self.create_calls = 0
        self.terminate_calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def create(self):
        with self._lock:
            self.create_calls += 1
            n = self.create_calls
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if n in self.fail_creates:
                raise ProvisioningError(f"create #{n} failed")
            instance_id = f"i-{n}"
            with self._lock:
                self.instances[instance_id] = "running"
            return instance_id
        finally:
            with self._lock:
                self.active -= 1

    def await_running(self, instance_id, timeout=None, cancel=None):
        n = int(instance_id.split("-")[1])
        if n in self.fail_await:
            raise ProvisioningTimeout(
                f"{instance_id}: not running after {timeout}s", instance_id=instance_id
            )
        return self.describe(instance_id)

    def describe(self, instance_id):
        with self._lock:
            if instance_id not in self.instances:
                raise InstanceNotFoundError(instance_id)
            state = self.instances[instance_id]
        n = instance_id.split("-")[1]
        return InstanceDescription(instance_id, f"10.0.0.{n}", 2200, state)

    def terminate(self, instance_id):
        with self._lock:
            self.terminate_calls.append(instance_id)
            if instance_id in self.fail_terminate:
                raise TeardownError(
                    f"{instance_id}: failed to destroy instance", instance_id=instance_id
                )
            self.instances.pop(instance_id, None)

    def list_instances(self):
        return [self.describe(i) for i in list(self.instances)]


@pytest.fixture
def fake_provisioner_cls():
    return FakeProvisioner


@pytest.fixture
def provisioner():
    return FakeProvisioner()


@pytest.fixture
def settings():
    return FleetSettings(
        max_parallel=4,
        ssh_connect_attempts=3,
        ssh_retry_interval=0,
        provision_timeout=5,
        provision_poll_interval=0,
    )


@pytest.fixture
def manager(provisioner, settings):
    return Manager(provisioner, settings=settings)


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so monkeypatch restores the original (possibly absent) value.
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "x")
        monkeypatch.delenv(key)
    return monkeypatch
