"""Identity tokens for keyless signing.

An IdentityProvider exchanges ambient credentials for a short-lived OIDC
bearer token. The certificate authority binds the token's identity
(email or subject, plus issuer) into the signing certificate, and readers
verify attestations against that same (subject, issuer) pair.

Token parsing is sigstore's ``IdentityToken``: it checks the audience and the
validity window and picks the identity claim the certificate authority will
certify for the token's issuer. Token signatures are not checked here; the
certificate authority does that when it issues a certificate.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Protocol

from sigstore.errors import Error as SigstoreError
from sigstore.oidc import IdentityToken, detect_credential

from ocistatus.errors import TransportError
from ocistatus.observability import Layer, get_logger

SIGSTORE_AUDIENCE = "sigstore"

logger = get_logger("identity", Layer.IDENTITY)


@dataclass(frozen=True)
class SignerIdentity:
    """The (subject, issuer) pair a signing certificate is bound to."""
    subject: str
    issuer: str

    def __str__(self) -> str:
        return f"{self.subject} ({self.issuer})"


class IdentityProvider(Protocol):
    def provide(self, audience: str) -> str:
        """Return a bearer token for ``audience``."""
        ...


def parse_identity_token(token: str) -> IdentityToken:
    """Parse ``token`` the way the signing client will.

    Raises:
        ValueError: the token is malformed, expired or for another audience.
    """
    try:
        return IdentityToken(str(token or "").strip())
    except SigstoreError as ex:
        raise ValueError(f"invalid identity token: {ex}") from ex


def extract_signer_identity(token: str) -> SignerIdentity:
    """Derive the identity a certificate authority would certify for ``token``."""
    parsed = parse_identity_token(token)
    return SignerIdentity(subject=parsed.identity, issuer=parsed.issuer)


class StaticIdentityProvider:
    """Always returns the same token."""

    def __init__(self, token: str):
        if not str(token or "").strip():
            raise ValueError("token is required")
        self._token = token.strip()

    def provide(self, audience: str) -> str:
        return self._token


class EnvironmentIdentityProvider:
    """Reads the token from an environment variable on every call."""

    def __init__(self, env_var: str = "SIGSTORE_ID_TOKEN"):
        self.env_var = env_var

    def available(self) -> bool:
        return bool(os.environ.get(self.env_var, "").strip())

    def provide(self, audience: str) -> str:
        token = os.environ.get(self.env_var, "").strip()
        if not token:
            raise TransportError(f"identity token environment variable {self.env_var} is empty")
        return token


class FileIdentityProvider:
    """Reads a projected token file (e.g. a Kubernetes service account token).

    The file is re-read on every call because the kubelet rotates it in place.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def available(self) -> bool:
        return self.path.is_file()

    def provide(self, audience: str) -> str:
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except OSError as ex:
            raise TransportError(f"reading identity token file {self.path}: {ex}") from ex
        if not token:
            raise TransportError(f"identity token file {self.path} is empty")
        return token


class AmbientIdentityProvider:
    """Workload credentials detected by sigstore.

    Covers CI and cloud environments that mint OIDC tokens for the sigstore
    audience (GitHub Actions, GitLab, Buildkite, Google Cloud metadata
    server). Detection runs on every call so rotated credentials are picked up.
    """

    def provide(self, audience: str) -> str:
        try:
            token = detect_credential()
        except SigstoreError as ex:
            raise TransportError(f"detecting ambient identity token: {ex}") from ex
        if not token:
            raise TransportError("no ambient identity token available")
        return token


def default_identity_provider(
    token_env: str = "SIGSTORE_ID_TOKEN",
    token_file: str = "",
) -> IdentityProvider:
    """Pick an ambient identity source.

    Order: an explicit token in ``token_env``, then ``token_file`` when it
    exists, then whatever credential sigstore can detect.
    """
    candidates: List[Any] = [EnvironmentIdentityProvider(token_env)]
    if token_file:
        candidates.append(FileIdentityProvider(Path(token_file)))
    for provider in candidates:
        if provider.available():
            logger.debug("Using identity provider", provider=type(provider).__name__)
            return provider
    logger.debug("Falling back to ambient credential detection")
    return AmbientIdentityProvider()
