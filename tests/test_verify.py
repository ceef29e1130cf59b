"""Offline verification of signed status bundles."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from sigstore.errors import Error as SigstoreError

from ocistatus import verify as verify_module
from ocistatus.core import b64_encode, canonical_json_bytes
from ocistatus.envelope import INTOTO_PAYLOAD_TYPE, SignedEnvelope, new_statement
from ocistatus.errors import TransportError, VerificationError
from ocistatus.identity import SignerIdentity
from ocistatus.subject import Subject
from ocistatus.testing import DEFAULT_TEST_IDENTITY, FakeSigstore, signed_envelope
from ocistatus.verify import (
    SigstoreVerifier,
    VerificationPolicy,
    VerifiedPayload,
    verify_envelope,
    verify_envelopes,
)

SUBJECT = Subject.parse("ghcr.io/org/app@sha256:" + "1" * 64)
OTHER_SUBJECT = Subject.parse("ghcr.io/org/app@sha256:" + "2" * 64)
PTYPE = "https://statusmanager.chainguard.dev/verify-test"
PREDICATE = {"observedGeneration": SUBJECT.digest, "details": {"ok": True}}
NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _policy(verifier, identity: SignerIdentity = DEFAULT_TEST_IDENTITY, subject: Subject = SUBJECT):
    return VerificationPolicy(verifier=verifier, identity=identity, subject_digest=subject.digest)


def _tamper(signed: SignedEnvelope, change) -> SignedEnvelope:
    doc = json.loads(signed.bundle)
    change(doc)
    return SignedEnvelope(bundle=canonical_json_bytes(doc), annotations=signed.annotations)


class StubVerifier:
    """Trusts everything and returns a fixed payload."""

    def __init__(self, payload: bytes, payload_type: str = INTOTO_PAYLOAD_TYPE, integrated_at=NOW):
        self.result = VerifiedPayload(payload_type=payload_type, payload=payload, integrated_at=integrated_at)

    def verify(self, signed, identity):
        return self.result


class TestFakeVerification:
    """Tests for trust, log and identity checks on fake bundles."""

    def test_valid(self):
        fake = FakeSigstore()
        env = signed_envelope(fake, SUBJECT, PREDICATE, PTYPE)
        v = verify_envelope(env, _policy(fake.verifier()))
        assert v.statement.predicate_type == PTYPE
        assert v.statement.predicate == PREDICATE
        assert v.integrated_at == fake.now()
        assert v.predicate_type == PTYPE

    def test_uri_identity(self):
        fake = FakeSigstore()
        workload = SignerIdentity("https://github.com/org/repo/.github/workflows/ci.yml@refs/heads/main",
                                  "https://token.actions.githubusercontent.com")
        env = signed_envelope(fake, SUBJECT, PREDICATE, PTYPE, identity=workload)
        verify_envelope(env, _policy(fake.verifier(), identity=workload))

    def test_untrusted_authority(self):
        trusted, rogue = FakeSigstore(), FakeSigstore()
        env = signed_envelope(rogue, SUBJECT, PREDICATE, PTYPE)
        with pytest.raises(VerificationError, match="trusted authority"):
            verify_envelope(env, _policy(trusted.verifier()))

    def test_rogue_with_same_authority_name(self):
        trusted, rogue = FakeSigstore(), FakeSigstore()
        env = _tamper(
            signed_envelope(rogue, SUBJECT, PREDICATE, PTYPE),
            lambda d: d["verificationMaterial"]["certificate"].update(authority=trusted.authority),
        )
        with pytest.raises(VerificationError, match="signature"):
            verify_envelope(env, _policy(trusted.verifier()))

    def test_either_of_two_trusted(self):
        a, b = FakeSigstore("a"), FakeSigstore("b")
        env = signed_envelope(b, SUBJECT, PREDICATE, PTYPE)
        verify_envelope(env, _policy(a.verifier(b)))

    def test_tampered_payload(self):
        fake = FakeSigstore()
        forged = new_statement(SUBJECT, canonical_json_bytes({"observedGeneration": SUBJECT.digest, "details": {"ok": False}}), PTYPE)
        env = _tamper(
            signed_envelope(fake, SUBJECT, PREDICATE, PTYPE),
            lambda d: d["dsseEnvelope"].update(payload=b64_encode(forged.to_bytes())),
        )
        with pytest.raises(VerificationError, match="signature"):
            verify_envelope(env, _policy(fake.verifier()))

    def test_missing_log_entry(self):
        fake = FakeSigstore()
        env = signed_envelope(fake, SUBJECT, PREDICATE, PTYPE, record=False)
        with pytest.raises(VerificationError, match="transparency log entry"):
            verify_envelope(env, _policy(fake.verifier()))

    def test_certificate_expired_before_integration(self):
        fake = FakeSigstore()
        fake.log_delay = 120
        env = signed_envelope(fake, SUBJECT, PREDICATE, PTYPE, lifetime=timedelta(seconds=60))
        with pytest.raises(VerificationError, match="not valid at the log integration time"):
            verify_envelope(env, _policy(fake.verifier()))

    def test_wrong_subject_identity(self):
        fake = FakeSigstore()
        env = signed_envelope(fake, SUBJECT, PREDICATE, PTYPE)
        other = SignerIdentity("intruder@example.com", DEFAULT_TEST_IDENTITY.issuer)
        with pytest.raises(VerificationError, match="identity"):
            verify_envelope(env, _policy(fake.verifier(), identity=other))

    def test_wrong_issuer(self):
        fake = FakeSigstore()
        env = signed_envelope(fake, SUBJECT, PREDICATE, PTYPE)
        other = SignerIdentity(DEFAULT_TEST_IDENTITY.subject, "https://issuer.example.com")
        with pytest.raises(VerificationError, match="issuer"):
            verify_envelope(env, _policy(fake.verifier(), identity=other))

    def test_garbage_bundle(self):
        fake = FakeSigstore()
        with pytest.raises(VerificationError, match="malformed"):
            verify_envelope(SignedEnvelope(bundle=b"\xff\xfe"), _policy(fake.verifier()))


class TestClaimChecks:
    """Tests for the checks made on the signed statement itself."""

    def test_wrong_subject_digest(self):
        fake = FakeSigstore()
        env = signed_envelope(fake, OTHER_SUBJECT, PREDICATE, PTYPE)
        with pytest.raises(VerificationError, match="does not claim subject"):
            verify_envelope(env, _policy(fake.verifier()))

    def test_wrong_payload_type(self):
        stub = StubVerifier(b"{}", payload_type="text/plain")
        with pytest.raises(VerificationError, match="unexpected payload type"):
            verify_envelope(SignedEnvelope(bundle=b"{}"), _policy(stub))

    def test_statement_not_json(self):
        with pytest.raises(VerificationError, match="unmarshaling statement"):
            verify_envelope(SignedEnvelope(bundle=b"{}"), _policy(StubVerifier(b"{nope")))

    def test_no_integration_time(self):
        payload = new_statement(SUBJECT, canonical_json_bytes(PREDICATE), PTYPE).to_bytes()
        with pytest.raises(VerificationError, match="integration time"):
            verify_envelope(SignedEnvelope(bundle=b"{}"), _policy(StubVerifier(payload, integrated_at=None)))

    def test_accepts_stub_payload(self):
        payload = new_statement(SUBJECT, canonical_json_bytes(PREDICATE), PTYPE).to_bytes()
        v = verify_envelope(SignedEnvelope(bundle=b"{}"), _policy(StubVerifier(payload)))
        assert v.integrated_at == NOW


class TestBatch:
    """Tests for batch verification."""

    def test_keeps_good_drops_bad(self, caplog):
        fake, rogue = FakeSigstore(), FakeSigstore()
        good = signed_envelope(fake, SUBJECT, PREDICATE, PTYPE)
        bad = signed_envelope(rogue, SUBJECT, PREDICATE, PTYPE)
        with caplog.at_level("WARNING", logger="ocistatus"):
            out = verify_envelopes([bad, good], _policy(fake.verifier()))
        assert [v.signed for v in out] == [good]
        assert any(r.getMessage() == "Dropping unverifiable attestation" for r in caplog.records)

    def test_all_bad_raises(self):
        fake, rogue = FakeSigstore(), FakeSigstore()
        bad = signed_envelope(rogue, SUBJECT, PREDICATE, PTYPE)
        with pytest.raises(VerificationError, match="no matching attestations"):
            verify_envelopes([bad], _policy(fake.verifier()))

    def test_empty_batch(self):
        assert verify_envelopes([], _policy(FakeSigstore().verifier())) == []


class TestSigstoreVerifier:
    """Tests for the sigstore-backed verifier."""

    def test_malformed_bundle_never_loads_trust(self):
        def trust():
            raise AssertionError("trust config should not be loaded")

        with pytest.raises(VerificationError, match="malformed sigstore bundle"):
            SigstoreVerifier(trust).verify(SignedEnvelope(bundle=b"not json"), DEFAULT_TEST_IDENTITY)

    def test_trusted_root_loaded_once(self, monkeypatch):
        built = []

        class StubSigstoreVerifier:
            def __init__(self, trusted_root):
                built.append(trusted_root)

        class StubConfig:
            trusted_root = "root"

        monkeypatch.setattr(verify_module, "Verifier", StubSigstoreVerifier)
        v = SigstoreVerifier(lambda: StubConfig())
        assert v.verifier() is v.verifier()
        assert built == ["root"]

    def test_trust_failure_is_transport_error(self, monkeypatch):
        class FailingConfig:
            @property
            def trusted_root(self):
                raise SigstoreError("TUF repository unreachable")

        v = SigstoreVerifier(lambda: FailingConfig())
        with pytest.raises(TransportError, match="TUF repository unreachable"):
            v.verifier()
