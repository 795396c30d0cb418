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
Base image reference parsing.
Parses references like 'rust:1.67' or 'ghcr.io/org/toolchain@sha256:...'
and decides whether they pin an exact image.
"""

from typing import Optional
from dataclasses import dataclass


@dataclass
class ImageReference:
    """
    Parsed image reference.

    Examples:
        - rust -> docker.io/library/rust:latest (unpinned)
        - rust:1.67 -> docker.io/library/rust:1.67
        - localhost:5000/tools/rust:1.67 -> localhost:5000/tools/rust:1.67
        - rust@sha256:abc... -> docker.io/library/rust@sha256:abc...
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None
    explicit_tag: bool = False

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"
    FLOATING_TAGS = ("latest", "stable", "nightly", "beta")

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'rust:1.67')

        Returns:
            Parsed ImageReference object.
        """
        reference = reference.strip() if reference else ""
        if not reference:
            raise ValueError("Empty image reference")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not digest:
                raise ValueError("Empty digest in image reference")

        # A colon followed by a path segment belongs to a registry port
        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1 and "/" not in reference[last_colon + 1 :]:
            tag = reference[last_colon + 1 :]
            reference = reference[:last_colon]
            if not tag:
                raise ValueError("Empty tag in image reference")
        explicit_tag = tag is not None

        parts = reference.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            repository = "/".join(parts[1:])
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference
            if len(parts) == 1:
                repository = f"library/{reference}"

        if not repository or repository.endswith("/"):
            raise ValueError(f"Invalid repository in image reference: {reference}")

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(
            registry=registry,
            repository=repository,
            tag=tag,
            digest=digest,
            explicit_tag=explicit_tag,
        )

    @property
    def is_pinned(self) -> bool:
        """True for a digest or an explicit, non-floating tag."""
        if self.digest:
            return True
        return self.explicit_tag and self.tag not in self.FLOATING_TAGS

    @property
    def name(self) -> str:
        """Repository name as written by users, without tag or digest."""
        if self.registry == self.DEFAULT_REGISTRY:
            if self.repository.startswith("library/"):
                return self.repository[len("library/"):]
            return self.repository
        return f"{self.registry}/{self.repository}"

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        return f"{name}:{self.tag}"

    @property
    def short_name(self) -> str:
        if self.digest:
            return f"{self.name}@{self.digest}"
        return f"{self.name}:{self.tag}"

    @property
    def registry_url(self) -> str:
        """Get the registry URL for API calls."""
        if self.registry == self.DEFAULT_REGISTRY:
            return "https://registry-1.docker.io"
        if self.registry.startswith("localhost"):
            return f"http://{self.registry}"
        return f"https://{self.registry}"

    def __str__(self) -> str:
        return self.short_name
