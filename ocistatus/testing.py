"""
In-process sigstore stand-ins for tests.

``FakeSigstore`` plays certificate authority and transparency log at once.
It issues bundles shaped like sigstore's (a DSSE envelope plus verification
material naming the certified identity and the log entry) and seals each one
with its own ECDSA key. ``FakeVerifier`` accepts only bundles sealed by the
fakes it was built for, checks the identity, requires a log entry and
rejects certificates that had expired by the integration time.

Integration times come from a clock that advances one second per entry, so
later writes always order after earlier ones.

``new_manager`` / ``new_read_only_manager`` wire a Manager to a fake and an
in-memory store.
"""

from __future__ import annotations

import json
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from ocistatus.core import b64_decode, b64_encode, canonical_json_bytes
from ocistatus.envelope import INTOTO_PAYLOAD_TYPE, PREDICATE_TYPE_ANNOTATION, SignedEnvelope, new_statement
from ocistatus.errors import TransparencyLogError, VerificationError
from ocistatus.identity import SignerIdentity, StaticIdentityProvider
from ocistatus.manager import Manager, ManagerOptions, new, new_read_only
from ocistatus.status import StatusCodec
from ocistatus.store import InMemoryAttestationStore
from ocistatus.subject import Subject
from ocistatus.verify import VerifiedPayload

__all__ = [
    "DEFAULT_TEST_IDENTITY",
    "FAKE_BUNDLE_MEDIA_TYPE",
    "FakeSigner",
    "FakeSigstore",
    "FakeVerifier",
    "InMemoryAttestationStore",
    "new_manager",
    "new_read_only_manager",
    "signed_envelope",
    "unsigned_token",
]

FAKE_BUNDLE_MEDIA_TYPE = "application/vnd.ocistatus.fake-bundle+json"

DEFAULT_TEST_IDENTITY = SignerIdentity(
    subject="reconciler@example-project.iam.gserviceaccount.com",
    issuer="https://accounts.google.com",
)


def unsigned_token(identity: SignerIdentity, audience: str = "sigstore", lifetime_seconds: int = 3600) -> str:
    """A JWT-shaped token with an ``alg: none`` header, for identity extraction."""
    def part(obj: Dict[str, Any]) -> str:
        return b64_encode(json.dumps(obj).encode("utf-8")).rstrip("=").replace("+", "-").replace("/", "_")

    now = int(time.time())
    claims: Dict[str, Any] = {
        "iss": identity.issuer,
        "sub": identity.subject,
        "aud": audience,
        "iat": now,
        "exp": now + lifetime_seconds,
    }
    if "@" in identity.subject:
        claims["email"] = identity.subject
        claims["email_verified"] = True
    return f"{part({'alg': 'none', 'typ': 'JWT'})}.{part(claims)}."


def _unsealed(doc: Dict[str, Any]) -> bytes:
    envelope = doc["dsseEnvelope"]
    return canonical_json_bytes({
        "mediaType": doc["mediaType"],
        "dsseEnvelope": {"payloadType": envelope["payloadType"], "payload": envelope["payload"]},
        "verificationMaterial": doc["verificationMaterial"],
    })


class FakeSigstore:
    """Certificate authority plus transparency log, entirely in memory."""

    def __init__(self, name: str = "fake"):
        self.name = name
        self.authority = f"{name}-{secrets.token_hex(4)}"
        self._key = ec.generate_private_key(ec.SECP256R1())
        self._lock = threading.Lock()
        self._now = int(time.time())
        self._index = 0
        self.log_delay = 0
        self.log_available = True
        self.entries: List[Dict[str, Any]] = []

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._now, tz=timezone.utc)

    def advance(self, seconds: int) -> None:
        with self._lock:
            self._now += seconds

    def signer(self, identity: SignerIdentity = DEFAULT_TEST_IDENTITY, lifetime: timedelta = timedelta(minutes=10)) -> "FakeSigner":
        return FakeSigner(self, identity, lifetime)

    def verifier(self, *also_trusted: "FakeSigstore") -> "FakeVerifier":
        return FakeVerifier(self, *also_trusted)

    def public_key(self) -> ec.EllipticCurvePublicKey:
        return self._key.public_key()

    def sign(
        self,
        statement: bytes,
        identity: SignerIdentity = DEFAULT_TEST_IDENTITY,
        lifetime: timedelta = timedelta(minutes=10),
        record: bool = True,
    ) -> SignedEnvelope:
        """Certify ``identity``, sign ``statement`` and (unless told not to) log it."""
        if record and not self.log_available:
            raise TransparencyLogError(f"{self.name} transparency log is unavailable")
        with self._lock:
            self._now += 1
            not_before = self._now - 1
            entries: List[Dict[str, Any]] = []
            if record:
                entries.append({"logIndex": self._index, "integratedTime": self._now + self.log_delay})
                self._index += 1

        doc: Dict[str, Any] = {
            "mediaType": FAKE_BUNDLE_MEDIA_TYPE,
            "dsseEnvelope": {"payloadType": INTOTO_PAYLOAD_TYPE, "payload": b64_encode(statement)},
            "verificationMaterial": {
                "certificate": {
                    "authority": self.authority,
                    "identity": identity.subject,
                    "issuer": identity.issuer,
                    "notBefore": not_before,
                    "notAfter": not_before + int(lifetime.total_seconds()),
                },
                "tlogEntries": entries,
            },
        }
        sig = self._key.sign(_unsealed(doc), ec.ECDSA(hashes.SHA256()))
        doc["dsseEnvelope"]["signatures"] = [{"sig": b64_encode(sig)}]
        self.entries.extend(entries)
        return SignedEnvelope(bundle=canonical_json_bytes(doc))


class FakeSigner:
    """Signs through a FakeSigstore as one identity; counts calls."""

    def __init__(self, sigstore: FakeSigstore, identity: SignerIdentity, lifetime: timedelta):
        self.sigstore = sigstore
        self.identity = identity
        self.lifetime = lifetime
        self.calls = 0

    def sign(self, statement: bytes) -> SignedEnvelope:
        self.calls += 1
        return self.sigstore.sign(statement, self.identity, self.lifetime)


class FakeVerifier:
    """Verifies bundles issued by a fixed set of FakeSigstores."""

    def __init__(self, *trusted: FakeSigstore):
        self._keys = {f.authority: f.public_key() for f in trusted}
        self.calls = 0

    def verify(self, signed: SignedEnvelope, identity: SignerIdentity) -> VerifiedPayload:
        self.calls += 1
        try:
            doc = json.loads(signed.bundle.decode("utf-8"))
            if doc.get("mediaType") != FAKE_BUNDLE_MEDIA_TYPE:
                raise ValueError(f"unexpected bundle media type {doc.get('mediaType')!r}")
            envelope = doc["dsseEnvelope"]
            cert = doc["verificationMaterial"]["certificate"]
            entries = doc["verificationMaterial"]["tlogEntries"]
            sigs = [b64_decode(s["sig"]) for s in envelope.get("signatures") or []]
            message = _unsealed(doc)
        except (ValueError, KeyError, TypeError, AttributeError) as ex:
            raise VerificationError(f"malformed bundle: {ex}") from ex

        key = self._keys.get(cert.get("authority"))
        if key is None:
            raise VerificationError("bundle was not issued by a trusted authority")
        for sig in sigs:
            try:
                key.verify(sig, message, ec.ECDSA(hashes.SHA256()))
                break
            except InvalidSignature:
                continue
        else:
            raise VerificationError("bundle signature does not verify")

        if not entries:
            raise VerificationError("bundle has no transparency log entry")
        integrated = int(entries[0]["integratedTime"])
        if not int(cert["notBefore"]) <= integrated <= int(cert["notAfter"]):
            raise VerificationError("certificate was not valid at the log integration time")
        if cert["issuer"] != identity.issuer:
            raise VerificationError(f"certificate issuer {cert['issuer']!r} does not match {identity.issuer!r}")
        if cert["identity"] != identity.subject:
            raise VerificationError(f"certificate identity {cert['identity']!r} does not match {identity.subject!r}")

        return VerifiedPayload(
            payload_type=envelope["payloadType"],
            payload=b64_decode(envelope["payload"]),
            integrated_at=datetime.fromtimestamp(integrated, tz=timezone.utc),
        )


def signed_envelope(
    sigstore: FakeSigstore,
    subject: Subject,
    predicate: Dict[str, Any],
    predicate_type: str,
    identity: SignerIdentity = DEFAULT_TEST_IDENTITY,
    lifetime: timedelta = timedelta(minutes=10),
    record: bool = True,
) -> SignedEnvelope:
    """Sign and log a statement outside any Manager, as a third party could."""
    payload = new_statement(subject, canonical_json_bytes(predicate), predicate_type).to_bytes()
    signed = sigstore.sign(payload, identity, lifetime, record=record)
    return SignedEnvelope(bundle=signed.bundle, annotations={PREDICATE_TYPE_ANNOTATION: predicate_type})


def new_manager(
    identity: str,
    codec: Optional[StatusCodec] = None,
    sigstore: Optional[FakeSigstore] = None,
    store: Optional[InMemoryAttestationStore] = None,
    signer_identity: SignerIdentity = DEFAULT_TEST_IDENTITY,
    **overrides: Any,
) -> Manager:
    """A writable Manager whose expected identity comes from a test token."""
    fake = sigstore or FakeSigstore()
    opts = ManagerOptions(
        identity_provider=StaticIdentityProvider(unsigned_token(signer_identity)),
        signer=fake.signer(signer_identity),
        verifier=fake.verifier(),
        store=store if store is not None else InMemoryAttestationStore(),
    )
    for k, v in overrides.items():
        setattr(opts, k, v)
    return new(identity, codec, opts)


def new_read_only_manager(
    identity: str,
    codec: Optional[StatusCodec] = None,
    sigstore: Optional[FakeSigstore] = None,
    store: Optional[InMemoryAttestationStore] = None,
    expected_identity: SignerIdentity = DEFAULT_TEST_IDENTITY,
    **overrides: Any,
) -> Manager:
    """A read-only Manager that trusts ``sigstore`` and expects ``expected_identity``."""
    fake = sigstore or FakeSigstore()
    opts = ManagerOptions(
        verifier=fake.verifier(),
        store=store if store is not None else InMemoryAttestationStore(),
        expected_identity=expected_identity,
    )
    for k, v in overrides.items():
        setattr(opts, k, v)
    return new_read_only(identity, codec, opts)
