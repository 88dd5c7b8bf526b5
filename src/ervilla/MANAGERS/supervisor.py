# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Supervision of the containers and pods belonging to one test scope.
"""
import logging
import uuid
from typing import Callable, Dict, List, Optional

from ..MODELS.configuration import ContainerConfiguration, SupervisorScope
from ..MODELS.container_spec import ContainerReference, ContainerSpec, PortPublish
from ..RUNNERS.command_builder import (
    container_name,
    pod_create_arguments,
    pod_name,
    pod_remove_arguments,
    remove_arguments,
    run_arguments,
    stop_arguments,
)
from ..RUNNERS.process_runner import ProcessRunner
from ..STORE.container_store import ContainerStore
from ..UTILS.exceptions import ContainerStateError, RuntimeCommandError, raise_if_any
from ..UTILS.logs import container_logger
from .container_handle import HELPER_TIMEOUT, ContainerHandle
from .pod_handle import PodHandle

logger = logging.getLogger(__name__)


class ContainerSupervisor:
    """
    Starts containers and pods for one scope and tears all of them down when
    the scope ends.

    Every container and pod is recorded in the container store before the
    runtime is asked to create it, so that a crashed run can be cleaned up by
    the next one (see ``clean_up_old_containers_and_pods``).
    """

    def __init__(self,
                 configuration: ContainerConfiguration,
                 scope: SupervisorScope,
                 store: ContainerStore,
                 runner: Optional[ProcessRunner] = None,
                 instance_id: Optional[uuid.UUID] = None,
                 on_close: Optional[Callable[["ContainerSupervisor"], None]] = None):
        """
        Initializes the supervisor.

        :param configuration: Configuration shared by all containers.
        :param scope: The scope this supervisor serves.
        :param store: The project's container store. Closed with the supervisor.
        :param runner: Runtime process launcher; one is made from the configuration if omitted.
        :param instance_id: Identity used in store audit records.
        :param on_close: Called once the supervisor has closed, even on failure.
        """
        self.configuration = configuration
        self.scope = scope
        self.store = store
        self.runner = runner or ProcessRunner(configuration)
        self.instance_id = instance_id or store.instance_id
        self.on_close = on_close

        self.containers: Dict[str, ContainerHandle] = {}
        self.pods: Dict[str, PodHandle] = {}
        self.closed = False

    def start(self, spec: ContainerSpec) -> ContainerHandle:
        """
        Starts a container and waits until it is ready.

        :param spec: The container to start.
        :return: The ready container.
        :raises StartupTimeoutError: If it did not become ready in time. The
            container stays owned by this supervisor and is removed on close.
        """
        return self._start_container(spec, pod=None)

    def create_pod(self, ports: List[PortPublish]) -> PodHandle:
        """
        Creates a pod publishing the given ports.

        :param ports: Ports shared by every container started in the pod.
        :return: The new pod.
        :raises RuntimeCommandError: If the runtime could not create the pod.
        """
        self._check_open()
        name = pod_name(self.configuration.project_name)
        self.store.pod_put(name)

        arguments = pod_create_arguments(name, ports)
        exit_code = self.runner.execute_and_wait(name, "pod-create", arguments)
        if exit_code != 0:
            self.store.pod_delete(name)
            raise RuntimeCommandError(self.runner.command(arguments), exit_code)

        pod = PodHandle(self, name, ports)
        self.pods[name] = pod
        return pod

    def _start_container(self, spec: ContainerSpec, pod: Optional[str]) -> ContainerHandle:
        self._check_open()
        name = container_name(self.configuration.project_name)
        self._prepare_volumes(spec)

        self.store.container_put(ContainerReference(name=name, pod=pod))
        process = self.runner.execute_logged(name, "run", run_arguments(spec, name, pod))

        handle = ContainerHandle(self, spec, name, process, pod=pod)
        self.containers[name] = handle
        handle.wait_until_ready()
        return handle

    @staticmethod
    def _prepare_volumes(spec: ContainerSpec) -> None:
        for mount in spec.volume_mounts:
            mount.host_path.mkdir(parents=True, exist_ok=True)

    def _forget_container(self, name: str) -> None:
        self.containers.pop(name, None)

    def _check_open(self) -> None:
        if self.closed:
            raise ContainerStateError("Supervisor is closed")

    def clean_up_old_containers_and_pods(self) -> None:
        """
        Removes every container and pod recorded in the store.

        Intended for the leftovers of a run that crashed before it could clean
        up. Each entry is handled independently; failures are collected and
        raised together once every entry has been tried.

        :raises CleanupError: If any entry could not be removed.
        """
        errors: List[BaseException] = []

        references = self.store.container_list()
        logger.debug("Cleaning up %d old containers.", len(references))
        for reference in references:
            try:
                self.runner.execute_and_wait(
                    reference.name, "stop", stop_arguments(reference.name), HELPER_TIMEOUT
                )
                self.runner.execute_and_wait(
                    reference.name, "rm", remove_arguments(reference.name), HELPER_TIMEOUT
                )
                self.store.container_delete(reference)
            except Exception as e:
                errors.append(e)

        names = self.store.pod_list()
        logger.debug("Cleaning up %d old pods.", len(names))
        for name in names:
            self._remove_old_pod(name, errors)

        raise_if_any("Failed to clean up old containers and pods", errors)

    def _remove_old_pod(self, name: str, errors: List[BaseException]) -> None:
        arguments = pod_remove_arguments(name)
        try:
            exit_code = self.runner.execute_and_wait(name, "pod-rm", arguments)
            if exit_code != 0:
                raise RuntimeCommandError(self.runner.command(arguments), exit_code)
        except Exception as e:
            errors.append(e)

        # A pod that no longer exists makes the runtime fail, but its record
        # must still go or every later cleanup fails the same way.
        try:
            self.store.pod_delete(name)
        except Exception as e:
            errors.append(e)

    def close(self) -> None:
        """
        Closes every pod and container, then the store.

        Pods are removed first; each container is then closed and finally the
        pod records are deleted, since container records refer to them.

        :raises CleanupError: If any step failed. Every step is attempted.
        """
        if self.closed:
            return
        self.closed = True

        log = container_logger(logger, None)
        errors: List[BaseException] = []
        try:
            log.debug("Shutting down pods.")
            for pod in list(self.pods.values()):
                try:
                    pod.close()
                except Exception as e:
                    errors.append(e)

            log.debug("Shutting down containers.")
            for container in list(self.containers.values()):
                try:
                    container.close()
                except Exception as e:
                    errors.append(e)

            log.debug("Deleting pod records.")
            for name in list(self.pods):
                try:
                    self.store.pod_delete(name)
                except Exception as e:
                    errors.append(e)
            self.pods.clear()

            try:
                self.store.close()
            except Exception as e:
                errors.append(e)
        finally:
            if self.on_close is not None:
                self.on_close(self)

        raise_if_any("Failed to close container supervisor", errors)

    def __enter__(self) -> "ContainerSupervisor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"ContainerSupervisor(project={self.configuration.project_name!r}, "
            f"scope={self.scope.value}, containers={len(self.containers)}, pods={len(self.pods)})"
        )
