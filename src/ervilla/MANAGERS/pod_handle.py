"""
Pods: shared network namespaces that group containers started by a supervisor.
"""
import logging
from typing import TYPE_CHECKING, List

from ..MODELS.container_spec import ContainerSpec, PortPublish
from ..RUNNERS.command_builder import pod_remove_arguments
from ..UTILS.exceptions import ContainerStateError, RuntimeCommandError
from ..UTILS.logs import container_logger
from .container_handle import ContainerHandle

if TYPE_CHECKING:
    from .supervisor import ContainerSupervisor

logger = logging.getLogger(__name__)


class PodHandle:
    """
    A pod created by a supervisor.

    Containers started through the pod join its network namespace and must not
    publish ports themselves; the pod's ports are shared by all of them.
    """

    def __init__(self, supervisor: "ContainerSupervisor", name: str, ports: List[PortPublish]):
        self.supervisor = supervisor
        self.name = name
        self.ports = list(ports)
        self.closed = False

    def start(self, spec: ContainerSpec) -> ContainerHandle:
        """
        Starts a container inside this pod and waits until it is ready.

        :param spec: The container to start. Its ports are ignored.
        :return: The ready container.
        """
        if self.closed:
            raise ContainerStateError(f"Pod {self.name} is closed")
        return self.supervisor._start_container(spec, pod=self.name)

    def close(self) -> None:
        """
        Removes the pod (and any containers still in it).

        :raises RuntimeCommandError: If the runtime fails to remove the pod.
        """
        if self.closed:
            return
        self.closed = True

        runner = self.supervisor.runner
        arguments = pod_remove_arguments(self.name)
        container_logger(logger, self.name).debug("Removing pod.")
        exit_code = runner.execute_and_wait(self.name, "pod-rm", arguments)
        if exit_code != 0:
            raise RuntimeCommandError(runner.command(arguments), exit_code)

    def __enter__(self) -> "PodHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"PodHandle(name={self.name!r}, closed={self.closed})"
