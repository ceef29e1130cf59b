"""in-toto statements and the signed bundles that carry them.

Profile / invariants:
- Statements are written as ``https://in-toto.io/Statement/v1`` with a single
  subject whose name is the repository and whose digest is the subject's
  sha256. v0.1 statements are still accepted on read.
- The DSSE payload type is ``application/vnd.in-toto+json``.
- A ``SignedEnvelope`` holds a serialized sigstore bundle: the DSSE envelope,
  the signing certificate and the transparency log entry travel together, so
  a reader needs nothing else to verify it offline.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ocistatus.core import b64_decode, b64_encode, canonical_json_bytes, sha256_bytes
from ocistatus.schema import INTOTO_STATEMENT_SCHEMA, validate_against_schema
from ocistatus.subject import Subject

INTOTO_PAYLOAD_TYPE = "application/vnd.in-toto+json"
STATEMENT_TYPE = "https://in-toto.io/Statement/v1"

BUNDLE_MEDIA_TYPE = "application/vnd.dev.sigstore.bundle.v0.3+json"
PREDICATE_TYPE_ANNOTATION = "predicateType"


@dataclass
class Statement:
    """An in-toto statement binding a predicate to subject digests."""
    predicate_type: str
    predicate: Dict[str, Any]
    subjects: List[Dict[str, Any]] = field(default_factory=list)
    statement_type: str = STATEMENT_TYPE

    def subject_digests(self) -> List[str]:
        """sha256 hex digests of every subject."""
        out: List[str] = []
        for s in self.subjects:
            d = (s.get("digest") or {}).get("sha256")
            if d:
                out.append(str(d))
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_type": self.statement_type,
            "subject": self.subjects,
            "predicateType": self.predicate_type,
            "predicate": self.predicate,
        }

    def to_bytes(self) -> bytes:
        return canonical_json_bytes(self.to_dict())

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Statement":
        try:
            obj = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as ex:
            raise ValueError(f"unmarshaling statement: {ex}") from ex
        errors = validate_against_schema(obj, INTOTO_STATEMENT_SCHEMA)
        if errors:
            raise ValueError(f"invalid in-toto statement: {'; '.join(errors)}")
        return cls(
            predicate_type=obj["predicateType"],
            predicate=obj.get("predicate") or {},
            subjects=list(obj["subject"]),
            statement_type=obj["_type"],
        )


def new_statement(subject: Subject, predicate_json: bytes, predicate_type: str) -> Statement:
    """Build a statement for ``subject`` from serialized predicate JSON."""
    if not predicate_type:
        raise ValueError("predicate type is required")
    try:
        predicate = json.loads(predicate_json.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as ex:
        raise ValueError(f"predicate is not valid JSON: {ex}") from ex
    if not isinstance(predicate, dict):
        raise ValueError("predicate must be a JSON object")
    return Statement(
        predicate_type=predicate_type,
        predicate=predicate,
        subjects=[{"name": str(subject.repository), "digest": {"sha256": subject.hex}}],
    )


@dataclass(frozen=True)
class SignedEnvelope:
    """A serialized sigstore bundle plus the store annotations published with it.

    Annotations are unsigned routing hints; the predicate type they carry is
    checked again against the signed statement after verification.
    """
    bundle: bytes
    annotations: Dict[str, str] = field(default_factory=dict)

    @property
    def predicate_type(self) -> Optional[str]:
        return self.annotations.get(PREDICATE_TYPE_ANNOTATION)

    @property
    def digest(self) -> str:
        return "sha256:" + sha256_bytes(self.bundle)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundle": b64_encode(self.bundle),
            "annotations": dict(self.annotations),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SignedEnvelope":
        return cls(
            bundle=b64_decode(d["bundle"]),
            annotations={str(k): str(v) for k, v in (d.get("annotations") or {}).items()},
        )
