"""
Integration tests for the pytest fixtures, run against the fake runtime.

The plugin's configuration and data directory fixtures are overridden here,
as a project's own conftest.py would.
"""
from datetime import timedelta

import pytest
from ervilla.MANAGERS.container_handle import ContainerState
from ervilla.MANAGERS.supervisor import ContainerSupervisor
from ervilla.MODELS.configuration import ContainerConfiguration, SupervisorScope
from ervilla.MODELS.container_spec import ContainerSpec

SPEC = ContainerSpec(registry="quay.io", image_name="example/app", image_tag="1")


@pytest.fixture(scope="module")
def module_runtime(fake_runtime_factory):
    return fake_runtime_factory()


@pytest.fixture(scope="session")
def ervilla_data_directory(tmp_path_factory):
    return tmp_path_factory.mktemp("ervilla-data")


@pytest.fixture(scope="module")
def ervilla_configuration(module_runtime):
    return ContainerConfiguration(
        project_name="com.example.plugin",
        runtime_executable=str(module_runtime.path),
        startup_wait_time=timedelta(seconds=10),
        liveness_check_pause=timedelta(milliseconds=50),
    )


_per_test = []


class TestFixtures:
    """Tests for the supervisor fixtures."""

    def test_per_test_supervisor(self, ervilla_supervisor):
        assert isinstance(ervilla_supervisor, ContainerSupervisor)
        assert ervilla_supervisor.scope == SupervisorScope.PER_TEST
        _per_test.append(ervilla_supervisor.start(SPEC))

    def test_per_test_supervisor_was_closed(self, ervilla_supervisor):
        """The previous test's container is gone."""
        assert _per_test[0].state == ContainerState.CLOSED
        assert ervilla_supervisor.store.container_list() == set()

    def test_class_supervisor(self, ervilla_class_supervisor, ervilla_supervisors):
        assert ervilla_class_supervisor.scope == SupervisorScope.PER_CLASS
        ervilla_class_supervisor.start(SPEC)
        assert len(ervilla_supervisors.live_instances("com.example.plugin")) == 1

    def test_class_supervisor_shared(self, ervilla_class_supervisor, ervilla_supervisor):
        """The class supervisor keeps its container while a test supervisor comes and goes."""
        assert len(ervilla_class_supervisor.containers) == 1
        assert len(ervilla_supervisor.store.container_list()) == 1


class IniConfig:
    """Just enough of pytest.Config for reading ini options."""

    def __init__(self, values):
        self.values = values

    def getini(self, name):
        return self.values.get(name, "")


def test_configuration_from_ini(monkeypatch):
    from ervilla.TESTING.pytest_plugin import configuration_from_ini
    monkeypatch.setenv("ERVILLA_RUNTIME", "/opt/podman")
    configuration = configuration_from_ini(IniConfig({
        "ervilla_project": "com.example.ini",
        "ervilla_startup_wait": "12",
        "ervilla_liveness_pause": "100",
        "ervilla_debug": "yes",
    }))
    assert configuration.project_name == "com.example.ini"
    assert configuration.runtime_executable == "/opt/podman"
    assert configuration.startup_wait_time == timedelta(seconds=12)
    assert configuration.liveness_check_pause == timedelta(milliseconds=100)
    assert configuration.debug_logging is True
