"""
Translation of container specs into argument vectors for the container runtime.

Everything here is pure apart from ``fresh_token``, which draws from the
operating system's secure random source.
"""
import base64
import re
import secrets
from typing import List, Optional

from ..MODELS.configuration import ContainerConfiguration
from ..MODELS.container_spec import (
    ContainerSpec,
    PortAddressKind,
    PortPublish,
    VolumeMount,
)

CONTAINER_PREFIX = "ERVILLA"
POD_PREFIX = "ERVILLA-POD"
TOKEN_BYTES = 9


def runtime_command(configuration: ContainerConfiguration) -> List[str]:
    """
    Returns the runtime executable plus any global flags.

    :param configuration: The supervisor configuration.
    :return: The command prefix for every runtime invocation.
    """
    if configuration.debug_logging:
        return [configuration.runtime_executable, "--log-level", "debug"]
    return [configuration.runtime_executable]


def port_spec(publish: PortPublish) -> str:
    """
    Formats a port publication as accepted by ``--publish``.

    :param publish: The port to publish.
    :return: e.g. ``0.0.0.0:60000:60000/tcp``.
    """
    address = publish.host_address
    ports = f"{publish.host_port}:{publish.container_port}/{publish.protocol.value}"

    if address.kind == PortAddressKind.ALL:
        return ports
    if address.kind == PortAddressKind.ALL_IPV4:
        return f"0.0.0.0:{ports}"
    if address.kind == PortAddressKind.ALL_IPV6:
        return f"[::]:{ports}"
    if address.kind == PortAddressKind.ADDRESS4:
        return f"{address.address}:{ports}"
    if address.kind == PortAddressKind.ADDRESS6:
        return f"[{address.address}]:{ports}"
    raise ValueError(f"Unrecognized port address kind: {address.kind}")


def volume_spec(mount: VolumeMount) -> str:
    """
    Formats a volume mount as accepted by ``--volume``.
    """
    return f"{mount.host_path.absolute()}:{mount.container_path}"


def fresh_token() -> str:
    """
    Returns a random, upper-case, URL-safe token of 9 random bytes.
    """
    encoded = base64.b64encode(secrets.token_bytes(TOKEN_BYTES)).decode("ascii")
    return re.sub(r"[^A-Za-z0-9]", "_", encoded).upper()


def container_name(project_name: str, token: Optional[str] = None) -> str:
    """
    Generates a unique container name: ``ERVILLA-<project>-<token>``.
    """
    return f"{CONTAINER_PREFIX}-{project_name}-{token or fresh_token()}"


def pod_name(project_name: str, token: Optional[str] = None) -> str:
    """
    Generates a unique pod name: ``ERVILLA-POD-<project>-<token>``.
    """
    return f"{POD_PREFIX}-{project_name}-{token or fresh_token()}"


def run_arguments(spec: ContainerSpec, name: str, pod: Optional[str] = None) -> List[str]:
    """
    Builds the arguments of the ``run`` subcommand for a container.

    Environment variables are sorted by name so that invocations are logged
    deterministically. A container joining a pod gets ``--pod`` and no
    ``--publish`` flags; its ports must be published on the pod.

    :param spec: The container spec.
    :param name: The unique container name.
    :param pod: The pod to join, if any.
    :return: Arguments following the runtime command prefix.
    """
    arguments = ["run", "--interactive", "--tty"]

    for key in sorted(spec.environment):
        arguments += ["--env", f"{key}={spec.environment[key]}"]

    for mount in spec.volume_mounts:
        arguments += ["--volume", volume_spec(mount)]

    if pod is not None:
        arguments += ["--pod", pod]
    else:
        for port in spec.ports:
            arguments += ["--publish", port_spec(port)]

    arguments += ["--name", name, spec.full_image_name]
    arguments += list(spec.arguments)
    return arguments


def pod_create_arguments(name: str, ports: List[PortPublish]) -> List[str]:
    """
    Builds the arguments of the ``pod create`` subcommand.
    """
    arguments = ["pod", "create"]
    for port in ports:
        arguments += ["--publish", port_spec(port)]
    arguments += ["--name", name]
    return arguments


def status_arguments(name: str) -> List[str]:
    """Arguments for the one-line status query of a container."""
    return ["ps", "--filter", f"name={name}", "--format", "{{.Status}}"]


def stop_arguments(name: str) -> List[str]:
    """Arguments for a graceful stop with a one second grace period."""
    return ["stop", "--ignore", "--time", "1", name]


def kill_arguments(name: str) -> List[str]:
    return ["kill", name]


def remove_arguments(name: str) -> List[str]:
    """Arguments for a forced removal that tolerates missing containers."""
    return ["rm", "-f", "--volumes", "--ignore", name]


def pod_remove_arguments(name: str) -> List[str]:
    return ["pod", "rm", "-f", name]


def start_arguments(name: str) -> List[str]:
    """Arguments for restarting a stopped container in the foreground."""
    return ["start", "--interactive", "--attach", name]


def exec_arguments(name: str, command: List[str]) -> List[str]:
    return ["exec", name] + list(command)
