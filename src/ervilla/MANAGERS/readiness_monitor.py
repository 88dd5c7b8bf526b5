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
Two-phase readiness detection for a freshly started container: wait for the
runtime to report it as up, then wait for its application-level ready check.
"""
import logging
import threading
from datetime import timedelta
from typing import Callable, List, Optional

from tenacity import RetryCallState, Retrying, retry_if_result, wait_fixed

from ..MODELS.configuration import ContainerConfiguration
from ..MODELS.container_spec import ContainerSpec
from ..RUNNERS.command_builder import status_arguments
from ..RUNNERS.process_runner import LoggedProcess, ProcessRunner
from ..UTILS.exceptions import ContainerExitedError, StartupTimeoutError
from ..UTILS.logs import container_logger

logger = logging.getLogger(__name__)

# Seconds allowed for the status query's output to be drained once it exited.
STATUS_DRAIN_TIMEOUT = 5.0


class _Cancelled(Exception):
    """Raised inside the polling thread once the caller stopped waiting."""


class ReadinessMonitor:
    """
    Polls one container until it is ready.

    Polling happens on a background thread so that the caller can bound the
    whole sequence by the configured startup wait time. When that time runs out
    the thread is told to stop at its next pause and the caller gets a
    StartupTimeoutError straight away; the container process keeps running.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        name: str,
        spec: ContainerSpec,
        configuration: ContainerConfiguration,
        process: LoggedProcess,
    ):
        """
        :param runner: Used to issue status queries.
        :param name: The container name.
        :param spec: Supplies the ready check and its pause.
        :param configuration: Supplies the liveness pause and startup wait time.
        :param process: The runtime process backing the container.
        """
        self.runner = runner
        self.name = name
        self.spec = spec
        self.configuration = configuration
        self.process = process

        self._log = container_logger(logger, name)
        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._error: Optional[BaseException] = None
        self.thread: Optional[threading.Thread] = None

    def wait_until_ready(self) -> None:
        """
        Blocks until the container is up and ready.

        :raises StartupTimeoutError: If the startup wait time elapsed first.
        :raises ContainerExitedError: If the backing process exited first.
        """
        timeout = self.configuration.startup_wait_time.total_seconds()
        self.thread = threading.Thread(
            target=self._run,
            name=f"ervilla.readiness.{self.name}",
            daemon=True,
        )
        self.thread.start()

        if not self._done.wait(timeout):
            self._cancelled.set()
            raise StartupTimeoutError(
                f"Container {self.name} did not become ready within {timeout} seconds"
            )
        if self._error is not None:
            raise self._error

    def cancel(self) -> None:
        self._cancelled.set()

    def _run(self) -> None:
        try:
            self._log.debug("Waiting for container to start.")
            self._await(self._is_live, self.configuration.liveness_check_pause, "liveness")
            self._log.debug("Container is up, waiting for it to become ready.")
            self._await(self._is_ready, self.spec.ready_check_pause, "readiness")
            self._log.debug("Container is ready.")
        except _Cancelled:
            self._log.debug("Readiness polling cancelled.")
        except BaseException as e:
            self._error = e
        finally:
            self._done.set()

    def _await(self, attempt: Callable[[], bool], pause: timedelta, phase: str) -> None:
        retrying = Retrying(
            retry=retry_if_result(lambda ok: not ok),
            wait=wait_fixed(pause.total_seconds()),
            stop=self._should_stop,
            sleep=self._pause,
            retry_error_callback=lambda state: False,
        )
        if retrying(attempt):
            return

        if self._cancelled.is_set():
            raise _Cancelled()
        raise ContainerExitedError(
            f"Container {self.name} exited with code {self.process.poll()} "
            f"before passing its {phase} check"
        )

    def _should_stop(self, retry_state: RetryCallState) -> bool:
        return self._cancelled.is_set() or not self.process.is_alive()

    def _pause(self, seconds: float) -> None:
        if self._cancelled.wait(seconds):
            raise _Cancelled()

    def _is_live(self) -> bool:
        lines: List[str] = []
        try:
            status = self.runner.execute_logged(
                self.name, "ps", status_arguments(self.name), lines.append
            )
            exit_code = status.wait()
            status.join_output(STATUS_DRAIN_TIMEOUT)
        except OSError as e:
            self._log.trace("Status query failed: %s", e)
            return False

        if exit_code != 0:
            self._log.debug("Status query returned exit code %s", exit_code)
            return False

        line = lines[0] if lines else ""
        self._log.debug("Status: %s", line)
        return line.upper().startswith("UP ")

    def _is_ready(self) -> bool:
        try:
            return bool(self.spec.ready_check.is_ready())
        except Exception as e:
            self._log.trace("Ready check raised: %s", e, exc_info=True)
            return False
