"""
Creation of container supervisors, and the registry of live supervisors that
decides when leftovers of a crashed run are cleaned up.
"""
import logging
import subprocess
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from ..MODELS.configuration import ContainerBackend, ContainerConfiguration, SupervisorScope
from ..RUNNERS.command_builder import runtime_command
from ..RUNNERS.process_runner import ProcessRunner
from ..STORE.container_store import ContainerStore
from ..UTILS.directories import project_store_path
from .supervisor import ContainerSupervisor

logger = logging.getLogger(__name__)

# Seconds allowed for the runtime's version subcommand.
VERSION_TIMEOUT = 5


def parse_backend(output: str) -> ContainerBackend:
    """
    Parses the ``Key: value`` lines printed by the runtime's version subcommand.
    Lines without a colon are skipped.
    """
    attributes: Dict[str, str] = {}
    for line in output.splitlines():
        key, separator, value = line.partition(":")
        if separator:
            attributes[key] = value.strip()
    return ContainerBackend(attributes=attributes)


class ContainerSupervisors:
    """
    Factory for container supervisors.

    The factory keeps track of the supervisors it created that are still open,
    per project. When a supervisor is created while no other supervisor of its
    project is open, whatever a previous (crashed) run left in the project's
    store is cleaned up first.

    One factory is meant to be shared by everything in a process that runs
    containers, e.g. a test session.
    """

    def __init__(self, data_directory: Optional[Path] = None):
        """
        :param data_directory: Where project stores are kept. Defaults to the
            user data directory (see ``ervilla.UTILS.directories``).
        """
        self.data_directory = data_directory
        self._lock = threading.Lock()
        self._instances: Dict[str, List[ContainerSupervisor]] = {}

    def is_supported(self, configuration: ContainerConfiguration) -> Optional[ContainerBackend]:
        """
        Checks that the configured runtime can be executed.

        Args:
            configuration (ContainerConfiguration): Names the runtime executable.

        Returns:
            Optional[ContainerBackend]: The runtime's version information, or
            None if it is missing, fails, or does not answer in time.
        """
        command = runtime_command(configuration) + ["version"]
        try:
            result = subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=VERSION_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("Failed to run %s: %s", configuration.runtime_executable, e)
            return None

        if result.returncode != 0:
            for line in result.stderr.splitlines():
                logger.error("%s", line)
            return None
        return parse_backend(result.stdout)

    def live_instances(self, project_name: str) -> List[ContainerSupervisor]:
        with self._lock:
            return list(self._instances.get(project_name, []))

    def create(self,
               configuration: ContainerConfiguration,
               scope: SupervisorScope,
               data_directory: Optional[Path] = None) -> ContainerSupervisor:
        """
        Creates a supervisor for the given scope.

        :param configuration: The container configuration.
        :param scope: The scope the supervisor serves.
        :param data_directory: Overrides the factory's data directory.
        :return: An open supervisor. The caller must close it.
        :raises StoreError: If the project's store cannot be opened.
        :raises CleanupError: If leftovers of a previous run could not be removed.
        """
        project = configuration.project_name
        store_path = project_store_path(project, data_directory or self.data_directory)
        logger.debug("Container database is %s", store_path)

        instance_id = uuid.uuid4()
        store = ContainerStore.open(project, store_path, instance_id, scope)
        supervisor = ContainerSupervisor(
            configuration,
            scope,
            store,
            runner=ProcessRunner(configuration),
            instance_id=instance_id,
            on_close=self._remove,
        )

        with self._lock:
            first = not self._instances.get(project)
            self._instances.setdefault(project, []).append(supervisor)

        if first:
            logger.debug("No existing instances: Running cleanup.")
            try:
                supervisor.clean_up_old_containers_and_pods()
            except Exception:
                supervisor.close()
                raise
        return supervisor

    def _remove(self, supervisor: ContainerSupervisor) -> None:
        project = supervisor.configuration.project_name
        with self._lock:
            instances = self._instances.get(project, [])
            if supervisor in instances:
                instances.remove(supervisor)
            if not instances:
                self._instances.pop(project, None)
