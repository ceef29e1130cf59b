"""Content-addressed subjects and their attestation locations.

A *subject* is an immutable ``repository@sha256:<digest>`` reference. Status
attestations for a subject live at a deterministic location derived only from
the subject:

  ``<repository>:sha256-<digest>.att``

Where:
- ``<repository>`` is the subject's repository, or an override repository when
  attestations are kept apart from the subject's own registry
- ``<digest>`` is the lowercase sha256 hex digest

Because the tag is computed directly from the digest, the subject itself does
not need to exist in the attestation repository.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union


SHA256_HEX_RE = re.compile(r"^[a-f0-9]{64}$")
_PATH_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$")

DEFAULT_REGISTRY = "index.docker.io"
_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}


def normalize_digest(digest: str) -> str:
    """Validate and normalize a ``sha256:<hex>`` digest string."""
    dd = str(digest or "").strip()
    algo, sep, hex_part = dd.partition(":")
    if not sep or algo != "sha256":
        raise ValueError(f"digest must be of the form sha256:<hex>, got {digest!r}")
    hex_part = hex_part.lower()
    if not SHA256_HEX_RE.match(hex_part):
        raise ValueError("digest must be 64 lowercase hex chars")
    return f"sha256:{hex_part}"


@dataclass(frozen=True)
class Repository:
    """A registry host plus repository path, e.g. ``ghcr.io/org/app``."""
    registry: str
    path: str

    @classmethod
    def parse(cls, name: str) -> "Repository":
        raw = str(name or "").strip()
        if not raw:
            raise ValueError("repository is required")

        first, sep, rest = raw.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            registry, path = first, rest
        else:
            registry, path = DEFAULT_REGISTRY, raw

        if not _REGISTRY_RE.match(registry):
            raise ValueError(f"invalid registry {registry!r} in {raw!r}")
        if registry in _DOCKER_HUB_ALIASES:
            registry = DEFAULT_REGISTRY
            if "/" not in path:
                path = f"library/{path}"

        for component in path.split("/"):
            if not _PATH_COMPONENT_RE.match(component):
                raise ValueError(f"invalid repository path component {component!r} in {raw!r}")
        return cls(registry=registry, path=path)

    def __str__(self) -> str:
        return f"{self.registry}/{self.path}"

    def digest(self, digest: str) -> "Subject":
        """Return a subject for ``digest`` in this repository."""
        return Subject(repository=self, digest=normalize_digest(digest))


@dataclass(frozen=True)
class Subject:
    """Immutable content-addressed reference (repository + digest)."""
    repository: Repository
    digest: str

    @classmethod
    def parse(cls, ref: str) -> "Subject":
        """Parse ``[registry/]repo[:tag]@sha256:<hex>``.

        A tag, when present, is discarded; only the digest identifies content.
        """
        raw = str(ref or "").strip()
        name, sep, digest = raw.partition("@")
        if not sep:
            raise ValueError(f"subject must be a digest reference (name@sha256:...), got {ref!r}")

        last_slash = name.rfind("/")
        colon = name.rfind(":")
        if colon > last_slash:
            tag = name[colon + 1:]
            if not _TAG_RE.match(tag):
                raise ValueError(f"invalid tag {tag!r} in {ref!r}")
            name = name[:colon]
        return cls(repository=Repository.parse(name), digest=normalize_digest(digest))

    @property
    def hex(self) -> str:
        return self.digest.split(":", 1)[1]

    def with_repository(self, repository: Optional[Repository]) -> "Subject":
        """Same digest, different repository (no-op when ``repository`` is None)."""
        if repository is None:
            return self
        return Subject(repository=repository, digest=self.digest)

    def __str__(self) -> str:
        return f"{self.repository}@{self.digest}"


SubjectLike = Union[Subject, str]


def as_subject(value: SubjectLike) -> Subject:
    if isinstance(value, Subject):
        return value
    return Subject.parse(value)


def attestation_tag(digest: str) -> str:
    """cosign-compatible attestation tag for a digest: ``sha256-<hex>.att``."""
    return normalize_digest(digest).replace(":", "-") + ".att"


@dataclass(frozen=True)
class Location:
    """Where a subject's attestations are stored."""
    repository: Repository
    tag: str

    @classmethod
    def for_subject(cls, subject: Subject) -> "Location":
        return cls(repository=subject.repository, tag=attestation_tag(subject.digest))

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"
