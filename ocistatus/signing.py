"""Keyless signing through the sigstore client.

Flow for every signature:

1. obtain an identity token from the IdentityProvider
2. the signing context generates an ephemeral key and has the certificate
   authority bind it to the token identity
3. the statement is signed as a DSSE envelope and uploaded to the
   transparency log, which returns the inclusion evidence
4. everything is returned as one sigstore bundle

Certificate authority and transparency log endpoints come from the client
trust config: a named public instance, or a trust config file for private
deployments.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack
from pathlib import Path
from typing import Callable, Optional, Protocol

from sigstore.dsse import Statement as DsseStatement
from sigstore.errors import Error as SigstoreError
from sigstore.models import ClientTrustConfig
from sigstore.sign import SigningContext

from ocistatus.envelope import SignedEnvelope
from ocistatus.errors import ConfigurationError, SigningError, TransparencyLogError, TransportError
from ocistatus.identity import SIGSTORE_AUDIENCE, IdentityProvider, parse_identity_token
from ocistatus.observability import Layer, get_logger

logger = get_logger("signer", Layer.SIGNER)

SIGSTORE_INSTANCES = ("production", "staging")


class Signer(Protocol):
    def sign(self, statement: bytes) -> SignedEnvelope:
        """Sign a serialized in-toto statement and record it in the log.

        Raises:
            SigningError: no signing certificate could be obtained.
            TransparencyLogError: signing or log upload failed.
        """
        ...


def load_trust_config(instance: str = "production", path: str = "", offline: bool = False) -> ClientTrustConfig:
    """Client trust config for a public instance, or from ``path`` when given.

    Raises:
        ConfigurationError: unknown instance, or an unreadable trust config file.
        TransportError: the instance's trust material could not be fetched.
    """
    if path:
        try:
            return ClientTrustConfig.from_json(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError, SigstoreError) as ex:
            raise ConfigurationError(f"loading sigstore trust config {path}: {ex}") from ex
    if instance not in SIGSTORE_INSTANCES:
        raise ConfigurationError(f"unknown sigstore instance {instance!r}")
    try:
        if instance == "staging":
            return ClientTrustConfig.staging(offline=offline)
        return ClientTrustConfig.production(offline=offline)
    except SigstoreError as ex:
        raise TransportError(f"fetching {instance} sigstore trust config: {ex}") from ex


class SigstoreSigner:
    """Signs statements with ephemeral keys certified by the sigstore CA.

    The signing context is built on first use and reused; fetching the trust
    config can touch the network.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        trust_config: Callable[[], ClientTrustConfig],
        context_factory: Callable[[ClientTrustConfig], SigningContext] = SigningContext.from_trust_config,
    ):
        self._identity_provider = identity_provider
        self._trust_config = trust_config
        self._context_factory = context_factory
        self._context: Optional[SigningContext] = None
        self._lock = threading.Lock()

    def _signing_context(self) -> SigningContext:
        with self._lock:
            if self._context is None:
                self._context = self._context_factory(self._trust_config())
            return self._context

    def sign(self, statement: bytes) -> SignedEnvelope:
        token = parse_identity_token(self._identity_provider.provide(SIGSTORE_AUDIENCE))
        dsse = DsseStatement(statement)
        context = self._signing_context()

        with ExitStack() as stack:
            try:
                signer = stack.enter_context(context.signer(token, cache=True))
            except Exception as ex:
                raise SigningError(f"obtaining signing certificate for {token.identity}: {ex}") from ex
            try:
                bundle = signer.sign_dsse(dsse)
            except Exception as ex:
                raise TransparencyLogError(f"signing and logging statement: {ex}") from ex

        logger.debug("Signed statement", identity=token.identity, issuer=token.issuer)
        return SignedEnvelope(bundle=bundle.to_json().encode("utf-8"))
