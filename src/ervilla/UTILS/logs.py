"""
Logging helpers: a TRACE level and per-container message tagging.
"""
import logging
from typing import Any, MutableMapping, Optional, Tuple

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class ContainerLogAdapter(logging.LoggerAdapter):
    """
    Prefixes every message with the container (or pod) it concerns and the
    source that produced it, e.g. ``[ERVILLA-com.example-X1Y2:run: stderr]``.
    """

    def __init__(self, logger: logging.Logger, container: Optional[str], source: str):
        super().__init__(logger, {"container": container or "*", "source": source})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['container']}:{self.extra['source']}] {msg}", kwargs

    def trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(TRACE, msg, *args, **kwargs)


def container_logger(logger: logging.Logger,
                     container: Optional[str],
                     source: str = "supervisor") -> ContainerLogAdapter:
    """
    Returns a logger that tags messages with a container name and source.

    :param logger: The module logger to wrap.
    :param container: The container or pod name, or None for "any".
    :param source: What is producing the messages (supervisor, a subcommand...).
    """
    return ContainerLogAdapter(logger, container, source)


def configure_logging(debug: bool = False) -> None:
    """
    Configures root logging for command line use. Library code never calls this.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
