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
Image reference parsing.
Splits references like 'quay.io/io7mcom/idstore:1.1.0' into the registry,
image name, tag and content hash that a container spec is made of.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed image reference.

    Examples:
        - postgres -> docker.io/library/postgres:latest
        - quay.io/io7mcom/idstore:1.1.0 -> quay.io/io7mcom/idstore:1.1.0
        - localhost:5000/app:2@sha256:ab12... -> registry localhost:5000, hash sha256:ab12...
    """

    registry: str
    image_name: str
    image_tag: str
    image_hash: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference (e.g. 'postgres:15', 'quay.io/a/b:1@sha256:...')

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty or malformed.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("Empty image reference")

        image_hash = None
        if "@" in reference:
            reference, image_hash = reference.rsplit("@", 1)
            if ":" not in image_hash:
                raise ValueError(f"Image hash must be of the form 'algorithm:hex': {image_hash}")

        tag = cls.DEFAULT_TAG
        last_colon = reference.rfind(":")
        if last_colon != -1 and "/" not in reference[last_colon + 1:]:
            tag = reference[last_colon + 1:]
            reference = reference[:last_colon]
        if not tag:
            raise ValueError("Empty image tag")

        parts = reference.split("/")
        if any(not part for part in parts):
            raise ValueError(f"Malformed image name: {reference}")

        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            name = "/".join(parts[1:])
        else:
            registry = cls.DEFAULT_REGISTRY
            name = reference if len(parts) > 1 else f"library/{reference}"

        return cls(registry=registry, image_name=name, image_tag=tag, image_hash=image_hash)

    @property
    def full_name(self) -> str:
        """Full reference as given to the runtime."""
        name = f"{self.registry}/{self.image_name}:{self.image_tag}"
        if self.image_hash:
            return f"{name}@{self.image_hash}"
        return name

    def spec_fields(self) -> Dict[str, Any]:
        """The ContainerSpec fields this reference provides."""
        return {
            "registry": self.registry,
            "image_name": self.image_name,
            "image_tag": self.image_tag,
            "image_hash": self.image_hash,
        }

    def __str__(self) -> str:
        return self.full_name
