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
Execution of container runtime processes with concurrent draining of their
output into the log.
"""
import logging
import subprocess
import threading
from typing import Callable, IO, List, Optional

from ..MODELS.configuration import ContainerConfiguration
from ..UTILS.logs import container_logger
from .command_builder import runtime_command

logger = logging.getLogger(__name__)

LineConsumer = Callable[[str], None]


def _ignore(line: str) -> None:
    pass


class LoggedProcess:
    """
    A running runtime process whose output is being drained by two threads.
    """

    def __init__(self,
                 process: subprocess.Popen,
                 command: List[str],
                 drains: List[threading.Thread]):
        self.process = process
        self.command = command
        self._drains = drains

    @property
    def pid(self) -> int:
        return self.process.pid

    def poll(self) -> Optional[int]:
        """
        Returns the exit code, or None if the process is still running.
        """
        return self.process.poll()

    def is_alive(self) -> bool:
        return self.process.poll() is None

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Waits for the process to exit.

        Args:
            timeout (Optional[float]): Seconds to wait, or None to wait forever.

        Returns:
            Optional[int]: The exit code, or None if the process is still running
            when the timeout expires. The process is never killed here.
        """
        try:
            return self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def join_output(self, timeout: Optional[float] = None) -> None:
        """
        Waits for both output drains to reach end-of-stream.
        """
        for drain in self._drains:
            drain.join(timeout)

    def __repr__(self) -> str:
        return f"LoggedProcess(pid={self.pid}, exit_code={self.poll()})"


class ProcessRunner:
    """
    Launches container runtime subcommands.

    Every launched process gets one thread draining its standard error (each
    line logged as an error) and one draining its standard output (each line
    logged at TRACE and handed to a line consumer). Runtime pipes have bounded
    buffers, so without the drains a chatty container would block on a full
    pipe and never exit.
    """

    def __init__(self, configuration: ContainerConfiguration):
        """
        Initializes the runner.

        Args:
            configuration (ContainerConfiguration): Supplies the runtime
                executable and whether debug logging is requested from it.
        """
        self.configuration = configuration

    def command(self, arguments: List[str]) -> List[str]:
        """
        Prefixes subcommand arguments with the runtime executable.
        """
        return runtime_command(self.configuration) + list(arguments)

    def execute_logged(self,
                       tag: Optional[str],
                       command_name: str,
                       arguments: List[str],
                       line_consumer: Optional[LineConsumer] = None) -> LoggedProcess:
        """
        Starts a runtime subcommand and begins draining its output.

        Args:
            tag (Optional[str]): Container or pod name used to tag log lines.
            command_name (str): Short name of the subcommand, used as log source.
            arguments (List[str]): Subcommand arguments (without the executable).
            line_consumer (Optional[LineConsumer]): Receives each stdout line.

        Returns:
            LoggedProcess: The running process.

        Raises:
            OSError: If the runtime executable cannot be started.
        """
        command = self.command(arguments)
        container_logger(logger, tag).debug("Exec: %s", command)

        # The runtime is given a stdin pipe that is never written to, which
        # keeps --interactive containers attached until they are stopped.
        process = subprocess.Popen(
            command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
            shell=False,
        )

        drains = [
            threading.Thread(
                target=self._drain_error,
                args=(tag, command_name, process),
                name="ervilla.io_supervisor.stderr",
                daemon=True,
            ),
            threading.Thread(
                target=self._drain_output,
                args=(tag, command_name, process, line_consumer or _ignore),
                name="ervilla.io_supervisor.stdout",
                daemon=True,
            ),
        ]
        for drain in drains:
            drain.start()
        return LoggedProcess(process, command, drains)

    def execute_and_wait(self,
                         tag: Optional[str],
                         command_name: str,
                         arguments: List[str],
                         timeout: Optional[float] = None) -> Optional[int]:
        """
        Runs a subcommand and waits for it to exit.

        Returns:
            Optional[int]: The exit code, or None if it was still running when
            the timeout expired.
        """
        process = self.execute_logged(tag, command_name, arguments)
        log = container_logger(logger, tag)
        log.debug("Waiting for '%s' invocation (pid %d).", command_name, process.pid)
        exit_code = process.wait(timeout)
        log.debug("Status %r", process)
        return exit_code

    @staticmethod
    def _drain_error(tag: Optional[str], command_name: str, process: subprocess.Popen) -> None:
        log = container_logger(logger, tag, f"{command_name}: stderr")
        stream: IO[str] = process.stderr
        try:
            with stream:
                for line in stream:
                    log.error("%s", line.rstrip("\r\n"))
        except Exception:
            log.error("Failed draining standard error.", exc_info=True)

    @staticmethod
    def _drain_output(tag: Optional[str],
                      command_name: str,
                      process: subprocess.Popen,
                      line_consumer: LineConsumer) -> None:
        log = container_logger(logger, tag, f"{command_name}: stdout")
        stream: IO[str] = process.stdout
        try:
            with stream:
                for line in stream:
                    line = line.rstrip("\r\n")
                    log.trace("%s", line)
                    try:
                        line_consumer(line)
                    except Exception:
                        log.trace("Line consumer failed.", exc_info=True)
        except Exception:
            log.trace("Failed draining standard output.", exc_info=True)
        finally:
            ProcessRunner._close_input(process)

    @staticmethod
    def _close_input(process: subprocess.Popen) -> None:
        if process.stdin is None:
            return
        try:
            process.stdin.close()
        except OSError:
            pass
