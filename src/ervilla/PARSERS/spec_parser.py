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
Parsers for YAML files describing the containers (and optional pod) to start.

Example::

    pod:
      ports: ["8080:80"]
    containers:
      - image: quay.io/io7mcom/idstore:1.1.0
        environment: {IDSTORE_MODE: test}
        arguments: [server]
        volumes: ["./data:/var/lib/idstore"]
        ready_check: {tcp: {host: localhost, port: 8080}}
        ready_check_pause: 0.5
"""
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..MODELS.container_spec import (
    ContainerSpec,
    PortAddress,
    PortProtocol,
    PortPublish,
    VolumeMount,
)
from ..MODELS.ready_checks import AlwaysReady, ReadyCheck, TCPSocketReadyCheck
from .image_reference import ImageReference


@dataclass
class ContainerFile:
    """
    Contents of a container spec file.

    ``pod_ports`` is None when the file does not ask for a pod; otherwise every
    container is started inside one pod publishing those ports.
    """
    containers: List[ContainerSpec] = field(default_factory=list)
    pod_ports: Optional[List[PortPublish]] = None


class SpecParser:
    """
    Parser for container spec files.
    """
    def __init__(self, base_dir: Optional[Path] = None):
        """
        :param base_dir: Directory that relative volume host paths are resolved against.
        """
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()

    def parse(self, path: str) -> ContainerFile:
        """
        Parses a spec file. Relative volume paths are resolved against the
        file's directory.

        :param path: Path to the spec file.
        :return: Parsed specs.
        """
        with open(path, "r") as f:
            content = f.read()
        return SpecParser(Path(path).absolute().parent).parse_from_string(content)

    def parse_from_string(self, content: str) -> ContainerFile:
        """
        Parses a spec file from a string.

        :param content: YAML content.
        :return: Parsed specs.
        :raises ValueError: If the document is not a valid spec file.
        """
        try:
            data = yaml.safe_load(content) if content.strip() else None
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}") from e
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ValueError("A container spec file must be a mapping")

        containers = data.get("containers") or []
        if not isinstance(containers, list):
            raise ValueError("'containers' must be a list")

        pod_ports = None
        pod = data.get("pod")
        if pod is not None:
            if not isinstance(pod, dict):
                raise ValueError("'pod' must be a mapping")
            pod_ports = [self.parse_port(p) for p in pod.get("ports") or []]

        return ContainerFile(
            containers=[self._parse_container(c) for c in containers],
            pod_ports=pod_ports,
        )

    def _parse_container(self, spec: Any) -> ContainerSpec:
        """
        Parses a single container entry.

        :param spec: The entry from the ``containers`` list.
        :return: A ContainerSpec instance.
        """
        if not isinstance(spec, dict) or "image" not in spec:
            raise ValueError(f"Container entries need an 'image': {spec!r}")

        image = ImageReference.parse(str(spec["image"]))

        environment: Dict[str, str] = {}
        env_spec = spec.get("environment") or {}
        if isinstance(env_spec, list):
            for e in env_spec:
                if "=" not in str(e):
                    raise ValueError(f"Environment entries must be KEY=VALUE: {e!r}")
                k, v = str(e).split("=", 1)
                environment[k] = v
        elif isinstance(env_spec, dict):
            environment = {str(k): "" if v is None else str(v) for k, v in env_spec.items()}
        else:
            raise ValueError("'environment' must be a mapping or a list")

        volumes = []
        for v in self._to_list(spec.get("volumes")):
            if isinstance(v, dict):
                host, target = v.get("source"), v.get("target")
            else:
                host, _, target = str(v).partition(":")
            if not host or not target:
                raise ValueError(f"Volumes must be HOST:CONTAINER: {v!r}")
            volumes.append(VolumeMount(host_path=self.base_dir / host, container_path=target))

        fields: Dict[str, Any] = dict(image.spec_fields())
        fields.update(
            ports=tuple(self.parse_port(p) for p in self._to_list(spec.get("ports"))),
            environment=environment,
            arguments=tuple(str(a) for a in self._to_list(spec.get("arguments"))),
            volume_mounts=tuple(volumes),
            ready_check=self._parse_ready_check(spec.get("ready_check")),
        )
        if spec.get("ready_check_pause") is not None:
            fields["ready_check_pause"] = timedelta(seconds=float(spec["ready_check_pause"]))
        return ContainerSpec(**fields)

    @staticmethod
    def _parse_ready_check(value: Any) -> ReadyCheck:
        if value is None:
            return AlwaysReady()
        if isinstance(value, dict) and isinstance(value.get("tcp"), dict):
            tcp = value["tcp"]
            return TCPSocketReadyCheck(
                str(tcp.get("host", "localhost")),
                int(tcp["port"]),
                float(tcp.get("timeout", 1.0)),
            )
        raise ValueError(f"Unsupported ready check: {value!r}")

    @staticmethod
    def parse_port(value: Any) -> PortPublish:
        """
        Parses a port, either a mapping (host_port, container_port, protocol,
        address) or a string ``[address:]host:container[/protocol]``.

        :param value: The port entry.
        :return: A PortPublish instance.
        """
        if isinstance(value, dict):
            address = value.get("address")
            return PortPublish(
                host_address=SpecParser._parse_address(address) if address else PortAddress.all(),
                host_port=int(value["host_port"]),
                container_port=int(value["container_port"]),
                protocol=PortProtocol(str(value.get("protocol", "tcp")).lower()),
            )

        text = str(value).strip()
        text, _, protocol = text.partition("/")
        parts = text.rsplit(":", 2)
        if len(parts) == 2:
            address = PortAddress.all()
        elif len(parts) == 3:
            address = SpecParser._parse_address(parts[0])
            parts = parts[1:]
        else:
            raise ValueError(f"Ports must be [ADDRESS:]HOST:CONTAINER[/PROTOCOL]: {value!r}")

        return PortPublish(
            host_address=address,
            host_port=int(parts[0]),
            container_port=int(parts[1]),
            protocol=PortProtocol((protocol or "tcp").lower()),
        )

    @staticmethod
    def _parse_address(address: str) -> PortAddress:
        if address == "0.0.0.0":
            return PortAddress.all_ipv4()
        if address in ("::", "[::]"):
            return PortAddress.all_ipv6()
        return PortAddress.of(address)

    @staticmethod
    def _to_list(val: Any) -> List[Any]:
        """
        Helper to ensure a value is a list.

        :param val: The value to convert.
        :return: A list.
        """
        if val is None:
            return []
        if isinstance(val, (str, dict)):
            return [val]
        return list(val)
