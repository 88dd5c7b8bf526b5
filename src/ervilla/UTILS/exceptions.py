"""
Exceptions raised by container supervisors, handles and the container store.
"""
from typing import List, Optional, Sequence


class ErvillaError(Exception):
    """Base class for all errors raised by ervilla."""


class StartupTimeoutError(ErvillaError):
    """A container did not become ready within the configured startup time."""


class ContainerExitedError(ErvillaError):
    """The runtime process backing a container exited before it became ready."""


class ContainerStateError(ErvillaError):
    """An operation was attempted on a closed container, pod, or supervisor."""


class ProcessStillAliveError(ErvillaError):
    """A container process was still running after being asked to stop."""


class StoreError(ErvillaError):
    """The container store could not be opened, read, or updated."""


class RuntimeCommandError(ErvillaError):
    """
    A container runtime invocation returned a non-zero exit code.
    """

    def __init__(self, command: Sequence[str], exit_code: Optional[int]):
        self.command = list(command)
        self.exit_code = exit_code
        super().__init__(
            f"Process '{self.command}' returned exit code {exit_code}"
        )


class CleanupError(ErvillaError):
    """
    One or more steps of a bulk teardown failed.

    Every failure is kept in ``errors``; the first one is also chained as the
    cause so that tracebacks show where things started going wrong.
    """

    def __init__(self, message: str, errors: List[BaseException]):
        self.errors = list(errors)
        details = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{message} ({len(self.errors)} failure(s)): {details}")


def raise_if_any(message: str, errors: List[BaseException]) -> None:
    """
    Raises a CleanupError carrying all collected errors, if there are any.

    :param message: Summary of the operation that was being performed.
    :param errors: The collected exceptions.
    """
    if errors:
        raise CleanupError(message, errors) from errors[0]
