"""Offline verification of signed status bundles.

A bundle is accepted only when every check passes:

1. the signing certificate chains to a trusted CA root and was valid when
   the transparency log integrated the entry
2. the DSSE signature verifies with the certificate key
3. the log entry is present and its inclusion evidence verifies with a
   trusted log key
4. the certificate identity and OIDC issuer equal the expected signer
5. the signed statement parses and claims the expected subject digest

Checks 1 to 4 belong to an ``EnvelopeVerifier``; ``SigstoreVerifier`` runs
them with the sigstore client. Check 5 is ours. Batch verification keeps the
bundles that pass and fails only when none do.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence

from sigstore.errors import Error as SigstoreError
from sigstore.models import Bundle, ClientTrustConfig
from sigstore.verify import Verifier
from sigstore.verify.policy import Identity

from ocistatus.envelope import INTOTO_PAYLOAD_TYPE, SignedEnvelope, Statement
from ocistatus.errors import TransportError, VerificationError
from ocistatus.identity import SignerIdentity
from ocistatus.observability import Layer, get_logger

logger = get_logger("verify", Layer.VERIFY)


@dataclass(frozen=True)
class VerifiedPayload:
    """What a trusted bundle signed, and when the log integrated it."""
    payload_type: str
    payload: bytes
    integrated_at: Optional[datetime]


class EnvelopeVerifier(Protocol):
    def verify(self, signed: SignedEnvelope, identity: SignerIdentity) -> VerifiedPayload:
        """Check trust, log evidence and signer identity.

        Raises:
            VerificationError: any check failed.
        """
        ...


def _integrated_at(bundle: Bundle) -> Optional[datetime]:
    entry = bundle.log_entry
    seconds = int(getattr(entry._inner, "integrated_time", 0) or 0) if entry is not None else 0
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class SigstoreVerifier:
    """Verifies sigstore bundles against one client trust config.

    The trust config is resolved on first use and the resulting verifier is
    reused for every later bundle.
    """

    def __init__(self, trust_config: Callable[[], ClientTrustConfig]):
        self._trust_config = trust_config
        self._verifier: Optional[Verifier] = None
        self._lock = threading.Lock()

    def verifier(self) -> Verifier:
        with self._lock:
            if self._verifier is None:
                try:
                    self._verifier = Verifier(trusted_root=self._trust_config().trusted_root)
                except SigstoreError as ex:
                    raise TransportError(f"loading sigstore trusted root: {ex}") from ex
            return self._verifier

    def verify(self, signed: SignedEnvelope, identity: SignerIdentity) -> VerifiedPayload:
        try:
            bundle = Bundle.from_json(signed.bundle)
        except Exception as ex:
            raise VerificationError(f"malformed sigstore bundle: {ex}") from ex

        policy = Identity(identity=identity.subject, issuer=identity.issuer)
        try:
            payload_type, payload = self.verifier().verify_dsse(bundle, policy)
        except SigstoreError as ex:
            raise VerificationError(str(ex)) from ex
        return VerifiedPayload(
            payload_type=payload_type,
            payload=payload,
            integrated_at=_integrated_at(bundle),
        )


@dataclass(frozen=True)
class VerificationPolicy:
    verifier: EnvelopeVerifier
    identity: SignerIdentity
    subject_digest: str


@dataclass
class VerifiedEnvelope:
    """A bundle that passed every check, with its parsed statement."""
    signed: SignedEnvelope
    statement: Statement
    integrated_at: Optional[datetime]

    @property
    def predicate_type(self) -> Optional[str]:
        return self.signed.predicate_type


def verify_envelope(signed: SignedEnvelope, policy: VerificationPolicy) -> VerifiedEnvelope:
    """Run every check against one bundle.

    Raises:
        VerificationError: on the first failing check.
    """
    verified = policy.verifier.verify(signed, policy.identity)
    if verified.payload_type != INTOTO_PAYLOAD_TYPE:
        raise VerificationError(f"unexpected payload type {verified.payload_type!r}")
    if verified.integrated_at is None:
        raise VerificationError("bundle has no transparency log integration time")

    try:
        statement = Statement.from_bytes(verified.payload)
    except ValueError as ex:
        raise VerificationError(str(ex)) from ex
    expected_hex = policy.subject_digest.split(":", 1)[-1]
    if expected_hex not in statement.subject_digests():
        raise VerificationError(f"statement does not claim subject {policy.subject_digest}")

    return VerifiedEnvelope(signed=signed, statement=statement, integrated_at=verified.integrated_at)


def verify_envelopes(
    envelopes: Sequence[SignedEnvelope],
    policy: VerificationPolicy,
) -> List[VerifiedEnvelope]:
    """Verify a batch; return the bundles that pass.

    Raises:
        VerificationError: when the batch is non-empty and nothing verifies.
    """
    verified: List[VerifiedEnvelope] = []
    failures: List[str] = []
    for signed in envelopes:
        try:
            verified.append(verify_envelope(signed, policy))
        except VerificationError as ex:
            failures.append(str(ex))
            logger.warning(
                "Dropping unverifiable attestation",
                digest=signed.digest,
                predicate_type=signed.predicate_type,
                error=str(ex),
            )
    if envelopes and not verified:
        raise VerificationError(f"no matching attestations: {'; '.join(failures)}")
    return verified
