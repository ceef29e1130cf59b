"""Identity token providers and claim extraction."""

import pytest
from sigstore.oidc import IdentityError

from ocistatus import identity as identity_module
from ocistatus.errors import TransportError
from ocistatus.identity import (
    AmbientIdentityProvider,
    EnvironmentIdentityProvider,
    FileIdentityProvider,
    SignerIdentity,
    StaticIdentityProvider,
    default_identity_provider,
    extract_signer_identity,
    parse_identity_token,
)
from ocistatus.testing import unsigned_token

SA = SignerIdentity("bot@proj.iam.gserviceaccount.com", "https://accounts.google.com")
WORKLOAD = SignerIdentity("https://github.com/org/repo/.github/workflows/ci.yml@refs/heads/main",
                          "https://token.actions.githubusercontent.com")
CLUSTER = SignerIdentity("system:serviceaccount:reconcilers:scanner",
                         "https://container.googleapis.com/v1/projects/p/locations/l/clusters/c")


class TestClaims:
    """Tests for identity extraction from tokens."""

    def test_email_identity(self):
        assert extract_signer_identity(unsigned_token(SA)) == SA

    def test_github_workflow_identity(self):
        assert extract_signer_identity(unsigned_token(WORKLOAD)) == WORKLOAD

    def test_unknown_issuer_uses_subject(self):
        assert extract_signer_identity(unsigned_token(CLUSTER)) == CLUSTER

    def test_parsed_token_exposes_issuer(self):
        token = parse_identity_token(unsigned_token(SA))
        assert token.issuer == SA.issuer
        assert token.identity == SA.subject

    @pytest.mark.parametrize("bad", ["", "a.b", "a.!!!.c", "a.bnVsbA.c", "not-a-jwt"])
    def test_malformed_token(self, bad):
        with pytest.raises(ValueError, match="invalid identity token"):
            extract_signer_identity(bad)

    def test_expired_token(self):
        with pytest.raises(ValueError):
            extract_signer_identity(unsigned_token(SA, lifetime_seconds=-3600))

    def test_wrong_audience(self):
        with pytest.raises(ValueError):
            extract_signer_identity(unsigned_token(SA, audience="someone-else"))


class TestProviders:
    """Tests for ambient token sources."""

    def test_static(self):
        assert StaticIdentityProvider(" tok ").provide("sigstore") == "tok"
        with pytest.raises(ValueError):
            StaticIdentityProvider("")

    def test_environment(self, monkeypatch):
        p = EnvironmentIdentityProvider("TEST_ID_TOKEN")
        monkeypatch.delenv("TEST_ID_TOKEN", raising=False)
        assert not p.available()
        with pytest.raises(TransportError):
            p.provide("sigstore")
        monkeypatch.setenv("TEST_ID_TOKEN", "abc")
        assert p.available()
        assert p.provide("sigstore") == "abc"

    def test_file_is_reread(self, tmp_path):
        f = tmp_path / "token"
        f.write_text("one\n", encoding="utf-8")
        p = FileIdentityProvider(f)
        assert p.provide("sigstore") == "one"
        f.write_text("two", encoding="utf-8")
        assert p.provide("sigstore") == "two"

    def test_file_missing(self, tmp_path):
        p = FileIdentityProvider(tmp_path / "missing")
        assert not p.available()
        with pytest.raises(TransportError):
            p.provide("sigstore")

    def test_default_prefers_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TEST_ID_TOKEN", "abc")
        assert isinstance(default_identity_provider("TEST_ID_TOKEN"), EnvironmentIdentityProvider)

    def test_default_then_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("TEST_ID_TOKEN", raising=False)
        f = tmp_path / "token"
        f.write_text("abc", encoding="utf-8")
        assert isinstance(default_identity_provider("TEST_ID_TOKEN", str(f)), FileIdentityProvider)

    def test_default_falls_back_to_ambient(self, monkeypatch):
        monkeypatch.delenv("TEST_ID_TOKEN", raising=False)
        assert isinstance(default_identity_provider("TEST_ID_TOKEN"), AmbientIdentityProvider)


class TestAmbientProvider:
    """Tests for sigstore credential detection."""

    def test_detected_token(self, monkeypatch):
        token = unsigned_token(WORKLOAD)
        monkeypatch.setattr(identity_module, "detect_credential", lambda: token)
        assert AmbientIdentityProvider().provide("sigstore") == token

    def test_detects_on_every_call(self, monkeypatch):
        tokens = iter(["one", "two"])
        monkeypatch.setattr(identity_module, "detect_credential", lambda: next(tokens))
        p = AmbientIdentityProvider()
        assert p.provide("sigstore") == "one"
        assert p.provide("sigstore") == "two"

    def test_nothing_detected(self, monkeypatch):
        monkeypatch.setattr(identity_module, "detect_credential", lambda: None)
        with pytest.raises(TransportError, match="no ambient identity token"):
            AmbientIdentityProvider().provide("sigstore")

    def test_detection_error(self, monkeypatch):
        def fail():
            raise IdentityError("metadata server said no")

        monkeypatch.setattr(identity_module, "detect_credential", fail)
        with pytest.raises(TransportError, match="metadata server said no"):
            AmbientIdentityProvider().provide("sigstore")
