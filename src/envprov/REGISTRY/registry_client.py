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
Registry client for resolving base image references.
Talks to the Docker Registry HTTP API V2, manifests only: layers are
pulled by the container engine, not by envprov.
"""

import base64
import hashlib
import json
import logging
from typing import Optional, Dict, Tuple
from dataclasses import dataclass
from urllib.request import urlopen, Request
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode

from .image_reference import ImageReference
from ..errors import ImageResolutionError

logger = logging.getLogger(__name__)

MANIFEST_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
)


@dataclass
class RegistryAuth:
    """Authentication credentials for a registry."""

    username: Optional[str] = None
    password: Optional[str] = None

    def basic(self) -> str:
        raw = f"{self.username}:{self.password}".encode()
        return f"Basic {base64.b64encode(raw).decode()}"


class RegistryClient:
    """
    Resolves image references to content digests.
    Supports Docker Hub and OCI-compatible registries.
    """

    def __init__(self, timeout: float = 30):
        """
        Initialize the registry client.

        Args:
            timeout: Socket timeout for each registry request, in seconds.
        """
        self.timeout = timeout
        self._auth_tokens: Dict[str, str] = {}
        self._credentials: Dict[str, RegistryAuth] = {}

    def set_credentials(self, registry: str, username: str, password: str) -> None:
        """
        Set credentials for a registry.

        Args:
            registry: Registry hostname (e.g., 'docker.io')
            username: Username
            password: Password or access token
        """
        self._credentials[registry] = RegistryAuth(username=username, password=password)

    def _get_auth_token(self, ref: ImageReference) -> Optional[str]:
        cache_key = f"{ref.registry}/{ref.repository}"
        if cache_key in self._auth_tokens:
            return self._auth_tokens[cache_key]

        if ref.registry == ImageReference.DEFAULT_REGISTRY:
            token = self._get_docker_hub_token(ref)
            self._auth_tokens[cache_key] = token
            return token

        creds = self._credentials.get(ref.registry)
        if creds and creds.username and creds.password:
            return creds.basic()
        return None

    def _get_docker_hub_token(self, ref: ImageReference) -> str:
        """Get a pull-scoped bearer token from the Docker Hub auth service."""
        params = {
            "service": "registry.docker.io",
            "scope": f"repository:{ref.repository}:pull",
        }
        request = Request(f"https://auth.docker.io/token?{urlencode(params)}")

        creds = self._credentials.get(ref.registry)
        if creds and creds.username and creds.password:
            request.add_header("Authorization", creds.basic())

        with urlopen(request, timeout=self.timeout) as response:
            data = json.loads(response.read().decode())
        return f"Bearer {data['token']}"

    def _make_request(self, url: str, ref: ImageReference, accept: str) -> Tuple[bytes, Dict[str, str]]:
        request = Request(url)
        token = self._get_auth_token(ref)
        if token:
            request.add_header("Authorization", token)
        request.add_header("Accept", accept)

        with urlopen(request, timeout=self.timeout) as response:
            return response.read(), dict(response.headers)

    def resolve(self, reference: str) -> str:
        """
        Resolve a reference to the digest of its manifest.

        Args:
            reference: Image reference, e.g. 'rust:1.67'

        Returns:
            The 'sha256:...' digest of the manifest (or manifest list).

        Raises:
            ImageResolutionError: The reference is malformed, unknown to the
                registry, or the registry is unreachable.
        """
        try:
            ref = ImageReference.parse(reference)
        except ValueError as e:
            raise ImageResolutionError(reference, str(e)) from e

        tag_or_digest = ref.digest or ref.tag
        url = f"{ref.registry_url}/v2/{ref.repository}/manifests/{tag_or_digest}"
        logger.debug("Fetching manifest %s", url)

        try:
            content, headers = self._make_request(url, ref, ", ".join(MANIFEST_TYPES))
        except HTTPError as e:
            raise ImageResolutionError(reference, f"registry returned HTTP {e.code}") from e
        except (URLError, OSError, ValueError, KeyError) as e:
            raise ImageResolutionError(reference, str(e)) from e

        digest = _header(headers, "Docker-Content-Digest")
        if not digest:
            digest = f"sha256:{hashlib.sha256(content).hexdigest()}"
        if ref.digest and digest != ref.digest:
            raise ImageResolutionError(reference, f"registry served {digest}")

        logger.info("Resolved %s to %s", ref.short_name, digest)
        return digest


def _header(headers: Dict[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None
