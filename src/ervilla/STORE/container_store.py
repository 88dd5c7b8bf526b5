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
Durable record of the containers and pods that supervisors have created, so
that they can be destroyed even after the owning process crashed.
"""
import logging
import sqlite3
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Set

import sqlalchemy
from sqlalchemy import (
    BigInteger,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    delete,
    event,
    insert,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..MODELS.configuration import SupervisorScope
from ..MODELS.container_spec import ContainerReference
from ..UTILS.exceptions import StoreError

logger = logging.getLogger(__name__)

DATABASE_APPLICATION_ID = "com.io7m.ervilla"
# "ERVI", stamped into the SQLite header of every store file
SQLITE_APPLICATION_ID = 0x45525649
SCHEMA_VERSION = 1
AUDIT_RETENTION_MS = 30 * 24 * 60 * 60 * 1000

metadata = MetaData()

pods = Table(
    "pods", metadata,
    Column("p_id", Integer, primary_key=True, autoincrement=True),
    Column("p_name", String, nullable=False, unique=True),
)

containers = Table(
    "containers", metadata,
    Column("c_name", String, primary_key=True),
    Column("c_pod", Integer, ForeignKey("pods.p_id"), nullable=True),
)

audit = Table(
    "audit", metadata,
    Column("a_instance", String, nullable=False),
    Column("a_scope", String, nullable=False),
    Column("a_time_ms", BigInteger, nullable=False),
    Column("a_text", String, nullable=False),
)

schema_version = Table(
    "schema_version", metadata,
    Column("version_number", Integer, nullable=False),
    Column("version_application", String, nullable=False),
    Column("version_project", String, nullable=False),
)


def create_engine(file: Path) -> Engine:
    """
    Creates an engine for a store file with foreign keys enforced and every
    transaction taking the write lock up front.
    """
    engine = sqlalchemy.create_engine(
        f"sqlite:///{Path(file).absolute()}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, _):
        # Stop pysqlite issuing BEGIN (and COMMIT) on its own.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def _now_ms() -> int:
    return int(time.time() * 1000)


class ContainerStore:
    """
    Records container and pod names in a small SQLite database.

    Every operation runs in its own transaction and commits before returning,
    so several supervisors (in one process or many) can share a store file.
    """

    def __init__(self,
                 engine: Engine,
                 instance_id: uuid.UUID,
                 scope: SupervisorScope):
        self._engine = engine
        self.instance_id = instance_id
        self.scope = scope

    @classmethod
    def open(cls,
             project_name: str,
             file: Path,
             instance_id: uuid.UUID,
             scope: SupervisorScope) -> "ContainerStore":
        """
        Opens or creates a store.

        The store must have been created by this application for the same
        project. Audit entries older than 30 days are purged, and an OPEN entry
        is recorded.

        :param project_name: The project that owns the store.
        :param file: The database file.
        :param instance_id: Identifies the opening supervisor in audit records.
        :param scope: The opening supervisor's scope.
        :return: An open store.
        :raises StoreError: On database errors or an identity mismatch.
        """
        logger.debug("Opening container store %s", file)
        engine = create_engine(file)
        store = cls(engine, instance_id, scope)
        try:
            with store._transaction() as connection:
                metadata.create_all(connection)
                cls._check_schema_version(connection, project_name)
            with store._transaction() as connection:
                store._audit(connection, "OPEN")
                cls._audit_cleanup(connection)
        except StoreError:
            engine.dispose()
            raise
        return store

    @staticmethod
    def _check_schema_version(connection: Connection, project_name: str) -> None:
        row = connection.execute(select(
            schema_version.c.version_number,
            schema_version.c.version_application,
            schema_version.c.version_project,
        )).first()

        if row is None:
            connection.execute(insert(schema_version).values(
                version_number=SCHEMA_VERSION,
                version_application=DATABASE_APPLICATION_ID,
                version_project=project_name,
            ))
            connection.exec_driver_sql(f"PRAGMA application_id = {SQLITE_APPLICATION_ID}")
            return

        version, application, project = row
        if application != DATABASE_APPLICATION_ID:
            raise StoreError(
                f"Database application ID is {application} "
                f"but should be {DATABASE_APPLICATION_ID}"
            )
        if project != project_name:
            raise StoreError(
                f"Database project ID is {project} but should be {project_name}"
            )
        if version > SCHEMA_VERSION:
            raise StoreError(
                f"Database schema version {version} is newer than the "
                f"supported version {SCHEMA_VERSION}"
            )

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        try:
            with self._engine.begin() as connection:
                yield connection
        except (SQLAlchemyError, sqlite3.Error) as e:
            message = str(getattr(e, "orig", None) or e)
            raise StoreError(message) from e

    def _audit(self, connection: Connection, text: str) -> None:
        connection.execute(insert(audit).values(
            a_instance=str(self.instance_id),
            a_scope=self.scope.value,
            a_time_ms=_now_ms(),
            a_text=text,
        ))

    @staticmethod
    def _audit_cleanup(connection: Connection) -> None:
        result = connection.execute(
            delete(audit).where(audit.c.a_time_ms < _now_ms() - AUDIT_RETENTION_MS)
        )
        logger.debug("Deleted %d old audit entries", result.rowcount)

    def pod_put(self, name: str) -> None:
        """
        Records a pod. Does nothing if the pod is already recorded.
        """
        with self._transaction() as connection:
            result = connection.execute(
                insert(pods).prefix_with("OR IGNORE").values(p_name=name)
            )
            if result.rowcount > 0:
                self._audit(connection, f"POD CREATE {name}")

    def pod_list(self) -> Set[str]:
        with self._transaction() as connection:
            return set(connection.execute(select(pods.c.p_name)).scalars())

    def pod_delete(self, name: str) -> None:
        """
        Deletes a pod record.

        :raises StoreError: If container records still refer to the pod.
        """
        with self._transaction() as connection:
            result = connection.execute(delete(pods).where(pods.c.p_name == name))
            if result.rowcount > 0:
                self._audit(connection, f"POD DELETE {name}")

    def container_put(self, reference: ContainerReference) -> None:
        """
        Records a container. Does nothing if the container is already recorded.
        """
        pod_id = None
        if reference.pod is not None:
            pod_id = (
                select(pods.c.p_id)
                .where(pods.c.p_name == reference.pod)
                .scalar_subquery()
            )

        with self._transaction() as connection:
            result = connection.execute(
                insert(containers).prefix_with("OR IGNORE").values(
                    c_name=reference.name,
                    c_pod=pod_id,
                )
            )
            if result.rowcount > 0:
                self._audit(connection, f"CONTAINER CREATE {reference.name}")

    def container_list(self) -> Set[ContainerReference]:
        query = select(containers.c.c_name, pods.c.p_name).select_from(
            containers.outerjoin(pods, containers.c.c_pod == pods.c.p_id)
        )
        with self._transaction() as connection:
            return {
                ContainerReference(name=c_name, pod=p_name)
                for c_name, p_name in connection.execute(query)
            }

    def container_delete(self, reference: ContainerReference) -> None:
        """
        Deletes a container record. Does nothing if it does not exist.
        """
        with self._transaction() as connection:
            result = connection.execute(
                delete(containers).where(containers.c.c_name == reference.name)
            )
            if result.rowcount > 0:
                self._audit(connection, f"CONTAINER DELETE {reference.name}")

    def close(self) -> None:
        """
        Records a CLOSE audit entry and releases the database.
        """
        try:
            with self._transaction() as connection:
                self._audit(connection, "CLOSE")
        finally:
            self._engine.dispose()

    def __enter__(self) -> "ContainerStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
