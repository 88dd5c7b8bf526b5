"""
Resolution of the per-project data directories holding container stores.
"""
import os
from pathlib import Path
from typing import Optional

DATA_DIRECTORY_VARIABLE = "ERVILLA_DATA_DIR"
STORE_FILE_NAME = "containers.db"


def default_data_directory() -> Path:
    """
    Returns the directory under which per-project stores are kept.

    ``$ERVILLA_DATA_DIR`` wins, then ``$XDG_DATA_HOME/ervilla``, then
    ``~/.local/share/ervilla``.
    """
    override = os.environ.get(DATA_DIRECTORY_VARIABLE)
    if override:
        return Path(override)
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "ervilla"
    return Path.home() / ".local" / "share" / "ervilla"


def project_store_path(project_name: str, data_directory: Optional[Path] = None) -> Path:
    """
    Returns the store file for a project, creating its directory if needed.

    :param project_name: The dotted project name.
    :param data_directory: Overrides the default data directory.
    :return: Path to the project's ``containers.db``.
    """
    root = Path(data_directory) if data_directory else default_data_directory()
    project_dir = root / project_name
    project_dir.mkdir(parents=True, exist_ok=True)
    return project_dir / STORE_FILE_NAME
