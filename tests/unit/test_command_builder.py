"""
Unit tests for runtime argument construction.
"""
import re
from pathlib import Path

import pytest
from ervilla.MODELS.configuration import ContainerConfiguration
from ervilla.MODELS.container_spec import (
    ContainerSpec,
    PortAddress,
    PortProtocol,
    PortPublish,
    VolumeMount,
)
from ervilla.RUNNERS.command_builder import (
    container_name,
    fresh_token,
    pod_create_arguments,
    pod_name,
    port_spec,
    run_arguments,
    runtime_command,
    status_arguments,
    volume_spec,
)


def make_spec(**fields) -> ContainerSpec:
    values = dict(registry="quay.io", image_name="io7mcom/idstore", image_tag="1.1.0")
    values.update(fields)
    return ContainerSpec(**values)


class TestPortSpec:
    """Tests for --publish formatting."""

    def test_all_ipv4(self):
        """All IPv4 interfaces bind on 0.0.0.0."""
        publish = PortPublish(host_address=PortAddress.all_ipv4(), host_port=60000, container_port=60000)
        assert port_spec(publish) == "0.0.0.0:60000:60000/tcp"

    def test_specific_ipv4(self):
        """A specific address prefixes the ports."""
        publish = PortPublish(host_address=PortAddress.of("10.0.0.5"), host_port=51000, container_port=51000)
        assert port_spec(publish) == "10.0.0.5:51000:51000/tcp"

    def test_all_interfaces(self):
        """All interfaces omit the address."""
        publish = PortPublish(host_port=8080, container_port=80, protocol=PortProtocol.UDP)
        assert port_spec(publish) == "8080:80/udp"

    def test_all_ipv6(self):
        """All IPv6 interfaces bind on [::]."""
        publish = PortPublish(host_address=PortAddress.all_ipv6(), host_port=8080, container_port=80)
        assert port_spec(publish) == "[::]:8080:80/tcp"

    def test_specific_ipv6_is_bracketed(self):
        """Specific IPv6 addresses are bracketed."""
        publish = PortPublish(host_address=PortAddress.of("::1"), host_port=8080, container_port=80)
        assert port_spec(publish) == "[::1]:8080:80/tcp"


class TestNames:
    """Tests for container and pod name generation."""

    def test_token_shape(self):
        """Tokens are 12 upper-case alphanumerics or underscores."""
        for _ in range(200):
            assert re.fullmatch(r"[A-Z0-9_]{12}", fresh_token())

    def test_container_name(self):
        """Container names carry the prefix and project."""
        name = container_name("com.example")
        assert re.fullmatch(r"ERVILLA-com\.example-[A-Z0-9_]{12}", name)

    def test_pod_name(self):
        """Pod names carry their own prefix."""
        assert pod_name("com.example", "TOKEN") == "ERVILLA-POD-com.example-TOKEN"

    def test_names_are_unique(self):
        """Many generated names never collide."""
        names = {container_name("p") for _ in range(1000)}
        assert len(names) == 1000


class TestRunArguments:
    """Tests for the run subcommand."""

    def test_full_invocation(self, tmp_path):
        """Environment is sorted and ports, volumes and arguments are placed."""
        spec = make_spec(
            environment={"B": "2", "A": "1"},
            ports=(PortPublish(host_address=PortAddress.all_ipv4(), host_port=51000, container_port=51000),),
            volume_mounts=(VolumeMount(host_path=tmp_path, container_path="/data"),),
            arguments=("help", "version"),
        )
        arguments = run_arguments(spec, "ERVILLA-p-X")
        assert arguments == [
            "run", "--interactive", "--tty",
            "--env", "A=1",
            "--env", "B=2",
            "--volume", f"{tmp_path.absolute()}:/data",
            "--publish", "0.0.0.0:51000:51000/tcp",
            "--name", "ERVILLA-p-X",
            "quay.io/io7mcom/idstore:1.1.0",
            "help", "version",
        ]

    def test_pod_members_do_not_publish(self):
        """Joining a pod replaces the container's own ports."""
        spec = make_spec(ports=(PortPublish(host_port=80, container_port=80),))
        arguments = run_arguments(spec, "N", pod="P")
        assert "--publish" not in arguments
        assert arguments[arguments.index("--pod") + 1] == "P"

    def test_image_hash(self):
        """A pinned hash is appended to the image."""
        spec = make_spec(image_hash="sha256:abcd")
        assert run_arguments(spec, "N")[-1] == "quay.io/io7mcom/idstore:1.1.0@sha256:abcd"


class TestOtherArguments:
    """Tests for the remaining subcommands."""

    def test_pod_create(self):
        ports = [PortPublish(host_port=8080, container_port=80)]
        assert pod_create_arguments("POD", ports) == ["pod", "create", "--publish", "8080:80/tcp", "--name", "POD"]

    def test_status(self):
        assert status_arguments("N") == ["ps", "--filter", "name=N", "--format", "{{.Status}}"]

    def test_volume_spec_is_absolute(self):
        mount = VolumeMount(host_path=Path("relative"), container_path="/c")
        assert volume_spec(mount) == f"{Path('relative').absolute()}:/c"

    def test_debug_logging_flag(self):
        """Debug logging is requested from the runtime."""
        configuration = ContainerConfiguration(project_name="p", debug_logging=True)
        assert runtime_command(configuration) == ["podman", "--log-level", "debug"]
        assert runtime_command(configuration.model_copy(update={"debug_logging": False})) == ["podman"]
