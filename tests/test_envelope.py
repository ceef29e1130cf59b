"""in-toto statements and signed bundle records."""

import json

import pytest

from ocistatus.envelope import (
    PREDICATE_TYPE_ANNOTATION,
    STATEMENT_TYPE,
    SignedEnvelope,
    Statement,
    new_statement,
)
from ocistatus.schema import STATUS_SCHEMA, validate_against_schema
from ocistatus.subject import Subject

SUBJECT = Subject.parse("ghcr.io/org/app@sha256:" + "c" * 64)
PTYPE = "https://statusmanager.chainguard.dev/test"


class TestStatement:
    """Tests for in-toto statements."""

    def test_new_statement(self):
        st = new_statement(SUBJECT, b'{"observedGeneration":"x","details":{}}', PTYPE)
        d = st.to_dict()
        assert d["_type"] == STATEMENT_TYPE
        assert d["predicateType"] == PTYPE
        assert d["subject"] == [{"name": "ghcr.io/org/app", "digest": {"sha256": "c" * 64}}]
        assert st.subject_digests() == ["c" * 64]

    def test_statement_bytes_roundtrip(self):
        st = new_statement(SUBJECT, b'{"a":1}', PTYPE)
        back = Statement.from_bytes(st.to_bytes())
        assert back == st

    def test_predicate_must_be_object(self):
        with pytest.raises(ValueError):
            new_statement(SUBJECT, b"[1,2]", PTYPE)

    def test_predicate_must_be_json(self):
        with pytest.raises(ValueError):
            new_statement(SUBJECT, b"{nope", PTYPE)

    def test_predicate_type_required(self):
        with pytest.raises(ValueError):
            new_statement(SUBJECT, b"{}", "")

    def test_from_bytes_rejects_missing_subject(self):
        raw = json.dumps({"_type": STATEMENT_TYPE, "subject": [], "predicateType": PTYPE}).encode()
        with pytest.raises(ValueError, match="invalid in-toto statement"):
            Statement.from_bytes(raw)

    def test_from_bytes_rejects_unknown_type(self):
        raw = json.dumps({
            "_type": "https://example.com/Other",
            "subject": [{"digest": {"sha256": "c" * 64}}],
            "predicateType": PTYPE,
        }).encode()
        with pytest.raises(ValueError):
            Statement.from_bytes(raw)

    def test_written_as_v1(self):
        assert STATEMENT_TYPE == "https://in-toto.io/Statement/v1"

    def test_v01_still_readable(self):
        raw = json.dumps({
            "_type": "https://in-toto.io/Statement/v0.1",
            "subject": [{"name": "ghcr.io/org/app", "digest": {"sha256": "c" * 64}}],
            "predicateType": PTYPE,
            "predicate": {"a": 1},
        }).encode()
        st = Statement.from_bytes(raw)
        assert st.statement_type == "https://in-toto.io/Statement/v0.1"
        assert st.subject_digests() == ["c" * 64]


class TestSignedEnvelope:
    """Tests for stored bundle records."""

    def test_predicate_type_from_annotation(self):
        signed = SignedEnvelope(bundle=b"{}", annotations={PREDICATE_TYPE_ANNOTATION: PTYPE})
        assert signed.predicate_type == PTYPE
        assert SignedEnvelope(bundle=b"{}").predicate_type is None

    def test_digest_covers_bundle_bytes(self):
        a = SignedEnvelope(bundle=b'{"a":1}')
        b = SignedEnvelope(bundle=b'{"a":2}')
        assert a.digest.startswith("sha256:")
        assert a.digest != b.digest
        assert a.digest == SignedEnvelope(bundle=b'{"a":1}', annotations={"x": "y"}).digest

    def test_dict_roundtrip(self):
        signed = SignedEnvelope(bundle=b"\x00bundle", annotations={PREDICATE_TYPE_ANNOTATION: PTYPE})
        back = SignedEnvelope.from_dict(json.loads(json.dumps(signed.to_dict())))
        assert back == signed

    def test_from_dict_rejects_bad_base64(self):
        with pytest.raises(ValueError):
            SignedEnvelope.from_dict({"bundle": "not base64!!"})


class TestStatusSchema:
    """Tests for the status predicate schema."""

    def test_valid(self):
        assert validate_against_schema({"observedGeneration": "sha256:" + "a" * 64, "details": None}, STATUS_SCHEMA) == []

    def test_missing_details(self):
        assert validate_against_schema({"observedGeneration": "sha256:" + "a" * 64}, STATUS_SCHEMA)

    def test_bad_generation(self):
        assert validate_against_schema({"observedGeneration": "v1", "details": {}}, STATUS_SCHEMA)
