"""
Application-level readiness checks run after a container is reported as up.
"""
import socket
from abc import ABC, abstractmethod


class ReadyCheck(ABC):
    """
    Decides whether the application inside a running container is usable.

    Implementations may raise; the readiness monitor treats any exception as
    "not ready yet" and tries again after the container spec's ready_check_pause.
    """

    @abstractmethod
    def is_ready(self) -> bool:
        """Returns True once the contained service can be used."""


class AlwaysReady(ReadyCheck):
    """Considers a container ready as soon as the runtime reports it as up."""

    def is_ready(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "AlwaysReady()"


class TCPSocketReadyCheck(ReadyCheck):
    """
    Succeeds when a TCP connection to the given address can be opened.
    """

    def __init__(self, address: str, port: int, timeout: float = 1.0):
        """
        :param address: Host name or address to connect to.
        :param port: TCP port to connect to.
        :param timeout: Connection timeout in seconds.
        """
        self.address = address
        self.port = port
        self.timeout = timeout

    def is_ready(self) -> bool:
        with socket.create_connection((self.address, self.port), timeout=self.timeout):
            return True

    def __repr__(self) -> str:
        return f"TCPSocketReadyCheck({self.address!r}, {self.port})"
