"""
Lifecycle management for individual containers.
"""
import logging
import threading
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Union, cast

from ..MODELS.configuration import ContainerConfiguration, StopMethod
from ..MODELS.container_spec import ContainerReference, ContainerSpec
from ..RUNNERS.command_builder import (
    exec_arguments,
    kill_arguments,
    remove_arguments,
    start_arguments,
    stop_arguments,
)
from ..RUNNERS.process_runner import LoggedProcess
from ..UTILS.exceptions import (
    ContainerStateError,
    ProcessStillAliveError,
    RuntimeCommandError,
    StoreError,
    raise_if_any,
)
from ..UTILS.logs import container_logger
from .readiness_monitor import ReadinessMonitor

if TYPE_CHECKING:
    from .supervisor import ContainerSupervisor

logger = logging.getLogger(__name__)

# Seconds to wait for stop/kill/rm helper invocations.
HELPER_TIMEOUT = 3.0
# Seconds the backing process gets to exit after an explicit stop.
STOP_EXIT_TIMEOUT = 5.0
# Seconds the backing process gets to exit after close.
CLOSE_EXIT_TIMEOUT = 10.0


class ContainerState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    CLOSED = "closed"


class ContainerHandle:
    """
    A running container owned by a supervisor.

    The handle tracks the runtime process that is attached to the container
    (``run`` initially, ``start --attach`` after a restart). Closing is
    terminal and happens at most once.
    """

    def __init__(self,
                 supervisor: "ContainerSupervisor",
                 spec: ContainerSpec,
                 name: str,
                 process: LoggedProcess,
                 pod: Optional[str] = None):
        self.supervisor = supervisor
        self.spec = spec
        self.name = name
        self.pod = pod
        self.process = process
        self.state = ContainerState.RUNNING

        self._lock = threading.Lock()
        self._log = container_logger(logger, name)

    @property
    def configuration(self) -> ContainerConfiguration:
        return self.supervisor.configuration

    @property
    def reference(self) -> ContainerReference:
        return ContainerReference(name=self.name, pod=self.pod)

    def wait_until_ready(self) -> None:
        """
        Blocks until the container is up and its ready check passes.

        :raises StartupTimeoutError: If the startup wait time elapsed first.
        :raises ContainerExitedError: If the container process exited first.
        """
        monitor = ReadinessMonitor(
            self.supervisor.runner,
            self.name,
            self.spec,
            self.configuration,
            self.process,
        )
        monitor.wait_until_ready()

    def execute_and_wait(self,
                         command: List[str],
                         timeout: Union[float, timedelta]) -> Optional[int]:
        """
        Runs a command inside the container.

        Args:
            command (List[str]): The command and its arguments.
            timeout (Union[float, timedelta]): How long to wait (seconds).

        Returns:
            Optional[int]: The exit code, or None if the command was still
            running when the timeout expired. It is not killed.

        Raises:
            OSError: If the runtime could not be started.
        """
        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        return self.supervisor.runner.execute_and_wait(
            self.name, "exec", exec_arguments(self.name, command), timeout
        )

    def execute_and_wait_indefinitely(self, command: List[str]) -> int:
        """
        Runs a command inside the container and waits for it to finish.
        """
        # Without a timeout the wait only returns once the process has exited.
        return cast(int, self.supervisor.runner.execute_and_wait(
            self.name, "exec", exec_arguments(self.name, command), None
        ))

    def copy_into(self, host_path: Union[str, Path], container_path: str) -> None:
        """
        Copies a host file or directory into the container.

        :raises RuntimeCommandError: If the runtime reports a failure.
        """
        self._copy([str(host_path), f"{self.name}:{container_path}"])

    def copy_from(self, container_path: str, host_path: Union[str, Path]) -> None:
        """
        Copies a file or directory out of the container onto the host.

        :raises RuntimeCommandError: If the runtime reports a failure.
        """
        self._copy([f"{self.name}:{container_path}", str(host_path)])

    def _copy(self, paths: List[str]) -> None:
        runner = self.supervisor.runner
        arguments = ["cp"] + paths
        exit_code = runner.execute_and_wait(self.name, "cp", arguments)
        if exit_code != 0:
            raise RuntimeCommandError(runner.command(arguments), exit_code)

    def stop(self, method: Optional[StopMethod] = None) -> None:
        """
        Stops the container, leaving it available to ``start()`` again.

        :param method: STOP or KILL; defaults to the configured stop method.
        :raises ContainerStateError: If the container has been closed.
        :raises ProcessStillAliveError: If the container process did not exit.
        """
        with self._lock:
            if self.state == ContainerState.CLOSED:
                raise ContainerStateError(f"Container {self.name} is closed")

            self._issue_stop(method or self.configuration.stop_method)
            if self.process.wait(STOP_EXIT_TIMEOUT) is None:
                raise ProcessStillAliveError(
                    f"Container {self.name} process (pid {self.process.pid}) is still alive"
                )
            self.supervisor.store.container_delete(self.reference)
            self.state = ContainerState.STOPPED

    def start(self) -> None:
        """
        Restarts a stopped container and waits until it is ready again.

        Does nothing if the container is already running.

        :raises ContainerStateError: If the container has been closed.
        :raises StartupTimeoutError: If it did not become ready in time.
        """
        with self._lock:
            if self.state == ContainerState.CLOSED:
                raise ContainerStateError(f"Container {self.name} is closed")
            if self.state == ContainerState.RUNNING and self.process.is_alive():
                self._log.debug("Container is already running.")
                return

            self.supervisor.store.container_put(self.reference)
            self.process = self.supervisor.runner.execute_logged(
                self.name, "start", start_arguments(self.name)
            )
            self.state = ContainerState.RUNNING
            self.wait_until_ready()

    def close(self) -> None:
        """
        Stops and removes the container and forgets its store record.

        Every step is attempted even if an earlier one failed. Calling close
        more than once has no further effect.

        :raises CleanupError: If any step failed.
        """
        with self._lock:
            if self.state == ContainerState.CLOSED:
                return
            self.state = ContainerState.CLOSED

        runner = self.supervisor.runner
        errors: List[BaseException] = []
        try:
            try:
                self._issue_stop(self.configuration.stop_method)
            except OSError as e:
                self._log.error("Could not stop container: %s", e)
                errors.append(e)

            try:
                runner.execute_and_wait(self.name, "rm", remove_arguments(self.name), HELPER_TIMEOUT)
            except OSError as e:
                self._log.error("Could not remove container: %s", e)
                errors.append(e)

            if self.process.wait(CLOSE_EXIT_TIMEOUT) is None:
                self._log.warning(
                    "Container process (pid %d) is still running after close.",
                    self.process.pid,
                )

            try:
                self.supervisor.store.container_delete(self.reference)
            except StoreError as e:
                self._log.error("Could not delete container record: %s", e)
                errors.append(e)
        finally:
            self.supervisor._forget_container(self.name)

        raise_if_any(f"Failed to close container {self.name}", errors)

    def _issue_stop(self, method: StopMethod) -> None:
        runner = self.supervisor.runner
        if method == StopMethod.KILL:
            runner.execute_and_wait(self.name, "kill", kill_arguments(self.name), HELPER_TIMEOUT)
        else:
            runner.execute_and_wait(self.name, "stop", stop_arguments(self.name), HELPER_TIMEOUT)

    def __enter__(self) -> "ContainerHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ContainerHandle(name={self.name!r}, pod={self.pod!r}, state={self.state.value})"
