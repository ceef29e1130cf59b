"""Attestation stores.

A store maps a subject to a deterministic location (see ``ocistatus.subject``)
and keeps the signed bundles published there. Three implementations:

- ``RegistryAttestationStore``: an OCI registry, cosign-compatible layout
  (``sha256-<hex>.att`` tag, one sigstore bundle layer per attestation,
  the predicate type carried as a layer annotation)
- ``LocalAttestationStore``: a directory tree, one JSON document per location
- ``InMemoryAttestationStore``: a dict, for tests and dry runs

REPLACE publishing drops every bundle at the location whose
``predicateType`` annotation equals the new one's, then adds the new one. The
transparency log keeps its own history; only discoverability changes.
"""

from __future__ import annotations

import json
import os
import pathlib
import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generator, List, Optional, Protocol, Tuple
from urllib.parse import urljoin

import httpx

from ocistatus.core import b64_encode, canonical_json_bytes, sha256_bytes
from ocistatus.envelope import BUNDLE_MEDIA_TYPE, PREDICATE_TYPE_ANNOTATION, SignedEnvelope
from ocistatus.errors import NotFoundError, TransportError
from ocistatus.observability import Layer, get_logger
from ocistatus.subject import Location, Subject

logger = get_logger("store", Layer.STORE)

OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
OCI_CONFIG_MEDIA_TYPE = "application/vnd.oci.image.config.v1+json"


class PublishMode(Enum):
    """How a publish treats bundles already at the location."""
    REPLACE = "replace"
    APPEND = "append"


class AttestationStore(Protocol):
    def location(self, subject: Subject) -> Location:
        ...

    def fetch_all(self, location: Location) -> List[SignedEnvelope]:
        """All envelopes at ``location``; an empty list when there are none."""
        ...

    def publish(
        self,
        location: Location,
        envelope: SignedEnvelope,
        mode: PublishMode = PublishMode.REPLACE,
    ) -> None:
        ...


def merge_envelopes(
    existing: List[SignedEnvelope],
    new: SignedEnvelope,
    mode: PublishMode,
) -> List[SignedEnvelope]:
    """Apply publish semantics to the envelopes already at a location."""
    if mode == PublishMode.REPLACE:
        kept = [e for e in existing if e.predicate_type != new.predicate_type]
    else:
        kept = list(existing)
    return [e for e in kept if e.digest != new.digest] + [new]


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryAttestationStore:
    """Process-local store. Thread-safe; counts publishes for assertions."""

    def __init__(self):
        self._data: Dict[Location, List[SignedEnvelope]] = {}
        self._lock = threading.Lock()
        self.publish_count = 0
        self.fetch_count = 0

    def location(self, subject: Subject) -> Location:
        return Location.for_subject(subject)

    def fetch_all(self, location: Location) -> List[SignedEnvelope]:
        with self._lock:
            self.fetch_count += 1
            return list(self._data.get(location, []))

    def publish(
        self,
        location: Location,
        envelope: SignedEnvelope,
        mode: PublishMode = PublishMode.REPLACE,
    ) -> None:
        with self._lock:
            self.publish_count += 1
            self._data[location] = merge_envelopes(self._data.get(location, []), envelope, mode)

    def put_raw(self, location: Location, envelopes: List[SignedEnvelope]) -> None:
        """Overwrite a location verbatim (bypasses publish semantics)."""
        with self._lock:
            self._data[location] = list(envelopes)


# ---------------------------------------------------------------------------
# Local directory
# ---------------------------------------------------------------------------


class LocalAttestationStore:
    """Directory-backed store.

    Layout: ``<root>/<registry>/<repository path>/<tag>.json`` holding
    ``{"envelopes": [...]}``. Writes go through a temp file and ``os.replace``
    so readers never see a partially written location.
    """

    def __init__(self, root: pathlib.Path):
        self.root = pathlib.Path(root)
        self._lock = threading.Lock()

    def location(self, subject: Subject) -> Location:
        return Location.for_subject(subject)

    def path_for(self, location: Location) -> pathlib.Path:
        registry = location.repository.registry.replace(":", "_")
        return self.root / registry / location.repository.path / f"{location.tag}.json"

    def fetch_all(self, location: Location) -> List[SignedEnvelope]:
        p = self.path_for(location)
        if not p.exists():
            return []
        try:
            doc = json.loads(p.read_text(encoding="utf-8"))
            return [SignedEnvelope.from_dict(d) for d in doc.get("envelopes") or []]
        except (ValueError, KeyError, TypeError, AttributeError) as ex:
            raise TransportError(f"reading attestations at {p}: {ex}") from ex

    def publish(
        self,
        location: Location,
        envelope: SignedEnvelope,
        mode: PublishMode = PublishMode.REPLACE,
    ) -> None:
        with self._lock:
            merged = merge_envelopes(self.fetch_all(location), envelope, mode)
            p = self.path_for(location)
            os.makedirs(str(p.parent), exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(p.parent), prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(canonical_json_bytes({"envelopes": [e.to_dict() for e in merged]}) + b"\n")
                os.replace(tmp, p)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        logger.debug("Published attestation", location=str(location), envelopes=len(merged))


# ---------------------------------------------------------------------------
# OCI registry
# ---------------------------------------------------------------------------


@dataclass
class RegistryOptions:
    """Transport settings for ``RegistryAttestationStore``."""
    insecure: bool = False
    timeout_seconds: float = 30.0
    username: str = ""
    password: str = ""
    user_agent: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    transport: Optional[httpx.BaseTransport] = None


def _parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    scheme, _, rest = header.strip().partition(" ")
    params: Dict[str, str] = {}
    for part in _split_challenge_params(rest):
        k, _, v = part.partition("=")
        params[k.strip().lower()] = v.strip().strip('"')
    return scheme.lower(), params


def _split_challenge_params(s: str) -> List[str]:
    out: List[str] = []
    buf = ""
    quoted = False
    for ch in s:
        if ch == '"':
            quoted = not quoted
        if ch == "," and not quoted:
            out.append(buf)
            buf = ""
            continue
        buf += ch
    if buf.strip():
        out.append(buf)
    return out


class RegistryTokenAuth(httpx.Auth):
    """Docker registry v2 token auth.

    Sends the request anonymously (or with a cached token); on a Bearer
    challenge, fetches a token from the realm (with basic credentials when
    configured) and retries once. Basic challenges are answered directly.
    """

    requires_response_body = True

    def __init__(self, username: str = "", password: str = ""):
        self._username = username
        self._password = password
        self._tokens: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _basic_header(self) -> str:
        return "Basic " + b64_encode(f"{self._username}:{self._password}".encode("utf-8"))

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        host = request.url.host
        with self._lock:
            token = self._tokens.get(host)
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        response = yield request
        if response.status_code != 401:
            return

        scheme, params = _parse_challenge(response.headers.get("WWW-Authenticate", ""))
        if scheme == "basic" and self._username:
            request.headers["Authorization"] = self._basic_header()
            yield request
            return
        if scheme != "bearer" or "realm" not in params:
            return

        query = {k: v for k, v in params.items() if k in ("service", "scope")}
        token_request = httpx.Request("GET", params["realm"], params=query)
        if self._username:
            token_request.headers["Authorization"] = self._basic_header()
        token_response = yield token_request
        if not token_response.is_success:
            return
        try:
            body = token_response.json()
        except ValueError:
            return
        token = (body.get("token") or body.get("access_token")) if isinstance(body, dict) else None
        if not token:
            return
        with self._lock:
            self._tokens[host] = token
        request.headers["Authorization"] = f"Bearer {token}"
        yield request


class RegistryAttestationStore:
    """Attestations as a cosign-style ``.att`` image in an OCI registry."""

    def __init__(self, options: Optional[RegistryOptions] = None):
        self.options = options or RegistryOptions()
        headers = dict(self.options.headers)
        if self.options.user_agent:
            headers.setdefault("User-Agent", self.options.user_agent)
        self._client = httpx.Client(
            timeout=httpx.Timeout(self.options.timeout_seconds),
            headers=headers,
            auth=RegistryTokenAuth(self.options.username, self.options.password),
            transport=self.options.transport,
            follow_redirects=True,
        )

    def location(self, subject: Subject) -> Location:
        return Location.for_subject(subject)

    def _base(self, location: Location) -> str:
        scheme = "http" if self.options.insecure else "https"
        return f"{scheme}://{location.repository.registry}/v2/{location.repository.path}"

    def _request(self, method: str, url: str, what: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as ex:
            raise TransportError(f"{what}: {ex}") from ex
        if resp.status_code == 404:
            raise NotFoundError(f"{what}: not found")
        if not resp.is_success:
            raise TransportError(f"{what}: HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)
        return resp

    def _manifest(self, location: Location) -> Optional[Dict[str, Any]]:
        """The attestation manifest, or None when the tag does not exist.

        A manifest that is not JSON or whose layers lack digests is a
        transport failure: proxies and misconfigured registries answer 200
        with HTML.
        """
        what = f"fetching manifest {location}"
        try:
            resp = self._request(
                "GET",
                f"{self._base(location)}/manifests/{location.tag}",
                what,
                headers={"Accept": OCI_MANIFEST_MEDIA_TYPE},
            )
        except NotFoundError:
            return None
        try:
            manifest = resp.json()
        except ValueError as ex:
            raise TransportError(f"{what}: response is not JSON: {ex}", status_code=resp.status_code) from ex
        if not isinstance(manifest, dict):
            raise TransportError(f"{what}: manifest is not an object", status_code=resp.status_code)
        layers = manifest.get("layers") or []
        if not isinstance(layers, list) or not all(
            isinstance(layer, dict) and isinstance(layer.get("digest"), str) for layer in layers
        ):
            raise TransportError(f"{what}: manifest layers must be objects with a digest", status_code=resp.status_code)
        return manifest

    def fetch_all(self, location: Location) -> List[SignedEnvelope]:
        manifest = self._manifest(location)
        if manifest is None:
            return []
        out: List[SignedEnvelope] = []
        for layer in manifest.get("layers") or []:
            digest = layer["digest"]
            blob = self._request(
                "GET",
                f"{self._base(location)}/blobs/{digest}",
                f"fetching attestation layer {digest}",
            ).content
            annotations = layer.get("annotations") or {}
            out.append(SignedEnvelope(
                bundle=blob,
                annotations={str(k): str(v) for k, v in annotations.items()},
            ))
        return out

    def _upload_blob(self, location: Location, data: bytes) -> str:
        digest = "sha256:" + sha256_bytes(data)
        base = self._base(location)
        try:
            self._request("HEAD", f"{base}/blobs/{digest}", f"checking blob {digest}")
            return digest
        except NotFoundError:
            pass

        started = self._request("POST", f"{base}/blobs/uploads/", f"starting upload of {digest}")
        upload_url = urljoin(f"{base}/blobs/uploads/", started.headers.get("Location", ""))
        sep = "&" if "?" in upload_url else "?"
        self._request(
            "PUT",
            f"{upload_url}{sep}digest={digest}",
            f"uploading blob {digest}",
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        return digest

    def publish(
        self,
        location: Location,
        envelope: SignedEnvelope,
        mode: PublishMode = PublishMode.REPLACE,
    ) -> None:
        manifest = self._manifest(location) or {}
        existing_layers = list(manifest.get("layers") or [])
        if mode == PublishMode.REPLACE:
            existing_layers = [
                l for l in existing_layers
                if (l.get("annotations") or {}).get(PREDICATE_TYPE_ANNOTATION) != envelope.predicate_type
            ]

        layer_digest = self._upload_blob(location, envelope.bundle)
        existing_layers = [l for l in existing_layers if l.get("digest") != layer_digest]
        layers = existing_layers + [{
            "mediaType": BUNDLE_MEDIA_TYPE,
            "size": len(envelope.bundle),
            "digest": layer_digest,
            "annotations": dict(envelope.annotations),
        }]

        config = canonical_json_bytes({
            "architecture": "",
            "os": "",
            "config": {},
            "rootfs": {"type": "layers", "diff_ids": [l["digest"] for l in layers]},
        })
        config_digest = self._upload_blob(location, config)

        new_manifest = {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST_MEDIA_TYPE,
            "config": {"mediaType": OCI_CONFIG_MEDIA_TYPE, "size": len(config), "digest": config_digest},
            "layers": layers,
        }
        self._request(
            "PUT",
            f"{self._base(location)}/manifests/{location.tag}",
            f"writing manifest {location}",
            content=canonical_json_bytes(new_manifest),
            headers={"Content-Type": OCI_MANIFEST_MEDIA_TYPE},
        )
        logger.debug("Published attestation", location=str(location), layers=len(layers))
