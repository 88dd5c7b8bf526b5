"""
Shared fixtures: a fake container runtime and supervisors that use it.
"""
import json
import shlex
import stat
import sys
from datetime import timedelta
from pathlib import Path
from typing import List

import pytest

from ervilla.MANAGERS.supervisor_factory import ContainerSupervisors
from ervilla.MODELS.configuration import ContainerConfiguration, SupervisorScope

FAKE_RUNTIME = r'''"""A stand-in for podman that keeps its containers as files."""
import json
import pathlib
import shutil
import sys
import time

STATE = pathlib.Path(__file__).resolve().parent / "state"
CONTAINERS = STATE / "containers"
MEMBERS = STATE / "members"
PODS = STATE / "pods"
STOPS = STATE / "stop"
FS = STATE / "fs"

args = sys.argv[1:]
if args[:2] == ["--log-level", "debug"]:
    args = args[2:]

for d in (CONTAINERS, MEMBERS, PODS, STOPS, FS):
    d.mkdir(parents=True, exist_ok=True)
with open(STATE / "calls.log", "a") as f:
    f.write(json.dumps(args) + "\n")

command = args[0] if args else ""
sub = f"pod-{args[1]}" if command == "pod" and len(args) > 1 else command

fail = STATE / f"fail-{sub}"
if fail.exists():
    sys.stderr.write(f"{sub} failed\n")
    sys.exit(int(fail.read_text().strip() or "1"))


def exists(name):
    return (CONTAINERS / name).exists()


def halt(name):
    (STOPS / name).touch()


def attach(name):
    marker = STOPS / name
    if marker.exists():
        marker.unlink()
    if (STATE / "exit-run").exists():
        (CONTAINERS / name).write_text("exited")
        sys.stderr.write("container crashed\n")
        sys.exit(3)
    (CONTAINERS / name).write_text("running")
    print(f"{name} started", flush=True)
    while not marker.exists() or (STATE / "ignore-stop").exists():
        time.sleep(0.05)
    if exists(name):
        (CONTAINERS / name).write_text("exited")
    sys.exit(0)


def host_path(text):
    name, sep, path = text.partition(":")
    if sep and not name.startswith("/") and not name.startswith("."):
        if not exists(name):
            sys.stderr.write(f"no such container {name}\n")
            sys.exit(125)
        return FS / name / path.lstrip("/")
    return pathlib.Path(text)


if command == "version":
    print("Version:      4.9.3")
    print("API Version:  4.9.3")
    print("OS/Arch:      linux/amd64")
elif command == "run":
    name = args[args.index("--name") + 1]
    if "--pod" in args:
        (MEMBERS / name).write_text(args[args.index("--pod") + 1])
    attach(name)
elif command == "start":
    name = args[-1]
    if not exists(name):
        sys.stderr.write(f"no such container {name}\n")
        sys.exit(125)
    attach(name)
elif command == "ps":
    name = [a for a in args if a.startswith("name=")][0][len("name="):]
    if exists(name) and (CONTAINERS / name).read_text() == "running":
        override = STATE / "ps-output"
        print(override.read_text().strip() if override.exists() else "Up 1 second")
elif command in ("stop", "kill"):
    halt(args[-1])
elif command == "rm":
    name = args[-1]
    halt(name)
    if exists(name):
        (CONTAINERS / name).unlink()
elif command == "exec":
    name, rest = args[1], args[2:]
    if not exists(name):
        sys.stderr.write(f"no such container {name}\n")
        sys.exit(125)
    if rest[:1] == ["exit"]:
        sys.exit(int(rest[1]))
    if rest[:1] == ["sleep"]:
        time.sleep(float(rest[1]))
    print(" ".join(rest))
elif command == "cp":
    source, target = host_path(args[1]), host_path(args[2])
    if not source.exists():
        sys.stderr.write(f"no such file {source}\n")
        sys.exit(125)
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, target)
elif sub == "pod-create":
    (PODS / args[args.index("--name") + 1]).touch()
elif sub == "pod-rm":
    pod = args[-1]
    if not (PODS / pod).exists():
        sys.stderr.write(f"no such pod {pod}\n")
        sys.exit(1)
    for member in MEMBERS.iterdir():
        if member.read_text() == pod:
            halt(member.name)
            if exists(member.name):
                (CONTAINERS / member.name).unlink()
            member.unlink()
    (PODS / pod).unlink()
else:
    sys.stderr.write(f"unknown command {args}\n")
    sys.exit(125)
'''


class FakeRuntime:
    """
    Handle on a fake runtime executable and the state it keeps.
    """

    def __init__(self, directory: Path):
        self.directory = directory
        self.path = directory / "fake-podman"
        self.script = directory / "fake_podman.py"
        self.state = directory / "state"
        directory.mkdir(parents=True, exist_ok=True)
        self.script.write_text(FAKE_RUNTIME)
        self.path.write_text(
            f"#!/bin/sh\nexec {shlex.quote(sys.executable)} {shlex.quote(str(self.script))} \"$@\"\n"
        )
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        self.state.mkdir(parents=True, exist_ok=True)

    def calls(self) -> List[List[str]]:
        log = self.state / "calls.log"
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text().splitlines() if line]

    def calls_of(self, command: str) -> List[List[str]]:
        return [c for c in self.calls() if c and c[0] == command]

    def fail(self, command: str, exit_code: int = 1) -> None:
        """Makes a subcommand (e.g. 'cp', 'pod-rm') exit with the given code."""
        (self.state / f"fail-{command}").write_text(str(exit_code))

    def succeed(self, command: str) -> None:
        marker = self.state / f"fail-{command}"
        if marker.exists():
            marker.unlink()

    def set_flag(self, flag: str, enabled: bool = True) -> None:
        """Toggles 'exit-run' or 'ignore-stop'."""
        marker = self.state / flag
        if enabled:
            marker.touch()
        elif marker.exists():
            marker.unlink()

    def set_status(self, text: str) -> None:
        (self.state / "ps-output").write_text(text)

    def container_state(self, name: str):
        path = self.state / "containers" / name
        return path.read_text() if path.exists() else None

    def pods(self) -> List[str]:
        pods = self.state / "pods"
        return sorted(p.name for p in pods.iterdir()) if pods.exists() else []

    def container_file(self, name: str, path: str) -> Path:
        return self.state / "fs" / name / path.lstrip("/")


def make_configuration(runtime: FakeRuntime, **overrides) -> ContainerConfiguration:
    fields = dict(
        project_name="com.example.tests",
        runtime_executable=str(runtime.path),
        startup_wait_time=timedelta(seconds=10),
        liveness_check_pause=timedelta(milliseconds=50),
    )
    fields.update(overrides)
    return ContainerConfiguration(**fields)


@pytest.fixture
def fake_runtime(tmp_path) -> FakeRuntime:
    """A fake podman in a fresh directory."""
    return FakeRuntime(tmp_path / "runtime")


@pytest.fixture
def configuration(fake_runtime) -> ContainerConfiguration:
    return make_configuration(fake_runtime)


@pytest.fixture
def data_directory(tmp_path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def supervisors(data_directory) -> ContainerSupervisors:
    return ContainerSupervisors(data_directory)


@pytest.fixture
def supervisor(supervisors, configuration):
    """A PER_TEST supervisor using the fake runtime, closed after the test."""
    supervisor = supervisors.create(configuration, SupervisorScope.PER_TEST)
    yield supervisor
    supervisor.close()


@pytest.fixture
def make_config(fake_runtime):
    """Builds configurations for the fake runtime with some fields overridden."""
    def _make(**overrides) -> ContainerConfiguration:
        return make_configuration(fake_runtime, **overrides)
    return _make


@pytest.fixture(scope="session")
def fake_runtime_factory(tmp_path_factory):
    """Creates fake runtimes for fixtures wider than a single test."""
    def _make() -> FakeRuntime:
        return FakeRuntime(tmp_path_factory.mktemp("runtime"))
    return _make
