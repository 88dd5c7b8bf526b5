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
Models for supervisor configuration, scopes and runtime support information.
"""
import os
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field

PROJECT_NAME_PATTERN = r"^[a-z][a-z0-9_-]{0,63}(\.[a-z][a-z0-9_-]{0,63}){0,15}$"

# environment variable -> configuration field
ENVIRONMENT_FIELDS = {
    "ERVILLA_PROJECT_NAME": "project_name",
    "ERVILLA_RUNTIME": "runtime_executable",
    "ERVILLA_STARTUP_WAIT_SECONDS": "startup_wait_time",
    "ERVILLA_LIVENESS_PAUSE_MS": "liveness_check_pause",
    "ERVILLA_DEBUG": "debug_logging",
    "ERVILLA_STOP_METHOD": "stop_method",
}


class StopMethod(str, Enum):
    """
    How a container is stopped: gracefully (with a short grace period) or
    immediately.
    """
    STOP = "stop"
    KILL = "kill"


class SupervisorScope(str, Enum):
    """
    The lifetime boundary after which a supervisor and its containers are
    torn down.
    """
    PER_TEST = "PER_TEST"
    PER_CLASS = "PER_CLASS"
    PER_SUITE = "PER_SUITE"


class ContainerBackend(BaseModel):
    """
    Information about a working container runtime, as printed by its
    ``version`` subcommand.
    """
    attributes: Dict[str, str] = {}


class ContainerConfiguration(BaseModel):
    """
    Configuration shared by every container a supervisor starts.
    """
    model_config = ConfigDict(frozen=True)

    project_name: str = Field(pattern=PROJECT_NAME_PATTERN)
    runtime_executable: str = "podman"
    startup_wait_time: timedelta = timedelta(seconds=30)
    liveness_check_pause: timedelta = timedelta(milliseconds=250)
    debug_logging: bool = False
    stop_method: StopMethod = StopMethod.STOP

    @classmethod
    def from_environment(cls,
                         env_file: Optional[str] = None,
                         environ: Optional[Dict[str, str]] = None,
                         **overrides: Any) -> "ContainerConfiguration":
        """
        Builds a configuration from ``ERVILLA_*`` environment variables.

        :param env_file: Optional dotenv file read before the environment.
        :param environ: The environment to read; defaults to ``os.environ``.
        :param overrides: Field values that take precedence over both.
        :return: A validated configuration.
        """
        values: Dict[str, Optional[str]] = {}
        if env_file and os.path.exists(env_file):
            values.update(dotenv_values(env_file))
        values.update(os.environ if environ is None else environ)

        fields: Dict[str, Any] = {}
        for variable, field in ENVIRONMENT_FIELDS.items():
            raw = values.get(variable)
            if raw is None or raw == "":
                continue
            if field == "liveness_check_pause":
                fields[field] = timedelta(milliseconds=float(raw))
            elif field == "startup_wait_time":
                fields[field] = timedelta(seconds=float(raw))
            elif field == "stop_method":
                fields[field] = raw.lower()
            else:
                fields[field] = raw

        fields.update(overrides)
        return cls(**fields)
