"""
Unit tests for registry resolution. Network access is replaced by a fake urlopen.
"""
import io
import json
import hashlib
from urllib.error import HTTPError, URLError

import pytest
from envprov.errors import ImageResolutionError
from envprov.REGISTRY import registry_client
from envprov.REGISTRY.registry_client import RegistryClient


class FakeResponse:
    def __init__(self, body, headers=None):
        self._body = body
        self.headers = headers or {}

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def install_urlopen(monkeypatch, handler):
    requests = []

    def fake_urlopen(request, timeout=None):
        requests.append(request)
        return handler(request)

    monkeypatch.setattr(registry_client, "urlopen", fake_urlopen)
    return requests


def docker_hub(manifest_headers=None, manifest_body=b'{"schemaVersion": 2}'):
    def handler(request):
        if request.full_url.startswith("https://auth.docker.io/token"):
            return FakeResponse(json.dumps({"token": "abc"}).encode())
        return FakeResponse(manifest_body, manifest_headers)
    return handler


def test_resolve_docker_hub(monkeypatch):
    requests = install_urlopen(monkeypatch, docker_hub({"Docker-Content-Digest": "sha256:feed"}))
    assert RegistryClient().resolve("rust:1.67") == "sha256:feed"

    token_request, manifest_request = requests
    assert "scope=repository%3Alibrary%2Frust%3Apull" in token_request.full_url
    assert manifest_request.full_url == "https://registry-1.docker.io/v2/library/rust/manifests/1.67"
    assert manifest_request.get_header("Authorization") == "Bearer abc"
    assert "manifest.list.v2+json" in manifest_request.get_header("Accept")


def test_digest_computed_when_header_missing(monkeypatch):
    body = b'{"schemaVersion": 2}'
    install_urlopen(monkeypatch, docker_hub(manifest_body=body))
    expected = f"sha256:{hashlib.sha256(body).hexdigest()}"
    assert RegistryClient().resolve("rust:1.67") == expected


def test_token_cached_per_repository(monkeypatch):
    requests = install_urlopen(monkeypatch, docker_hub({"Docker-Content-Digest": "sha256:feed"}))
    client = RegistryClient()
    client.resolve("rust:1.67")
    client.resolve("rust:1.68")
    assert sum("auth.docker.io" in r.full_url for r in requests) == 1


def test_private_registry_basic_auth(monkeypatch):
    requests = install_urlopen(monkeypatch, lambda r: FakeResponse(b"{}", {"docker-content-digest": "sha256:1"}))
    client = RegistryClient()
    client.set_credentials("registry.example.com", "user", "secret")
    assert client.resolve("registry.example.com/tools/rust:1.67") == "sha256:1"
    assert requests[0].get_header("Authorization").startswith("Basic ")


def test_unknown_tag(monkeypatch):
    def handler(request):
        if "auth.docker.io" in request.full_url:
            return FakeResponse(b'{"token": "abc"}')
        raise HTTPError(request.full_url, 404, "Not Found", {}, io.BytesIO())

    install_urlopen(monkeypatch, handler)
    with pytest.raises(ImageResolutionError, match="HTTP 404"):
        RegistryClient().resolve("rust:0.0")


def test_unreachable_registry(monkeypatch):
    def handler(request):
        raise URLError("Name or service not known")

    install_urlopen(monkeypatch, handler)
    with pytest.raises(ImageResolutionError):
        RegistryClient().resolve("registry.invalid/rust:1.67")


def test_digest_mismatch(monkeypatch):
    install_urlopen(monkeypatch, lambda r: FakeResponse(b"{}", {"Docker-Content-Digest": "sha256:other"}))
    with pytest.raises(ImageResolutionError, match="sha256:other"):
        RegistryClient().resolve("ghcr.io/org/rust@sha256:wanted")


def test_malformed_reference():
    with pytest.raises(ImageResolutionError):
        RegistryClient().resolve("")
