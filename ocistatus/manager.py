"""
Status Manager.

Copyright (c) 2026 Momentum. All rights reserved.

Records reconciliation status for immutable, content-addressed subjects as
signed attestations and reads it back with full verification.

A Manager is built once per reconciler identity; a Session is opened per
unit of work and bound to one subject:

    manager = new("my-reconciler", DataclassCodec(Progress))
    session = manager.new_session("ghcr.io/org/app@sha256:...")
    status = session.observed_state()          # None if nothing trustworthy
    ...
    session.set_actual_state(Status(details=Progress(...)))

Writes sign an in-toto statement keylessly, record it in the transparency log
and publish the resulting sigstore bundle with REPLACE semantics. Reads fetch
every bundle at the subject's location, verify them as a batch, keep the ones
with this Manager's predicate type and return the one integrated last.
Unverifiable reads return None and log a warning; they never raise.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Generic, List, Optional, TypeVar

from sigstore.models import ClientTrustConfig

from ocistatus.config import DEFAULT_USER_AGENT, StatusManagerConfig, get_config
from ocistatus.core import canonical_json_bytes
from ocistatus.envelope import PREDICATE_TYPE_ANNOTATION, new_statement
from ocistatus.errors import (
    ConfigurationError,
    DecodeError,
    InvalidStatusError,
    NotFoundError,
    PayloadTooLargeError,
    PublishError,
    PublishStage,
    ReadOnlyError,
    StatusManagerError,
    TransparencyLogError,
    VerificationError,
)
from ocistatus.identity import (
    SIGSTORE_AUDIENCE,
    IdentityProvider,
    SignerIdentity,
    default_identity_provider,
    extract_signer_identity,
)
from ocistatus.observability import Layer, get_logger, timed_operation
from ocistatus.signing import SIGSTORE_INSTANCES, Signer, SigstoreSigner, load_trust_config
from ocistatus.status import Candidate, JsonCodec, Status, StatusCodec, decode_status, encode_status, select_latest
from ocistatus.store import (
    AttestationStore,
    PublishMode,
    RegistryAttestationStore,
    RegistryOptions,
)
from ocistatus.subject import Location, Repository, Subject, SubjectLike, as_subject
from ocistatus.verify import (
    EnvelopeVerifier,
    SigstoreVerifier,
    VerificationPolicy,
    VerifiedEnvelope,
    verify_envelopes,
)

T = TypeVar("T")

manager_logger = get_logger("manager", Layer.MANAGER)
session_logger = get_logger("session", Layer.SESSION)

# Rekor rejects request bodies above 150 MiB.
REKOR_HTTP_LIMIT = 150 * 1024 * 1024

# A status grows about 1.7x on its way into a log request: base64 inside the
# DSSE envelope, then the envelope embedded as a string in the proposed entry.
# The ratio was measured, not derived.
STATUS_JSON_SIZE_LIMIT = REKOR_HTTP_LIMIT * 10 // 17

PREDICATE_TYPE_PREFIX = "https://statusmanager.chainguard.dev/"


def predicate_type_for(identity: str) -> str:
    return PREDICATE_TYPE_PREFIX + identity


@dataclass
class ManagerOptions:
    """Everything a Manager can be configured with.

    The certificate authority and transparency log endpoints come from the
    sigstore client trust config: ``instance`` names a public deployment,
    ``trust_config`` points at a file for a private one. Collaborators left
    as None are built from those and the registry options.
    """
    instance: str = "production"
    trust_config: str = ""
    offline: bool = False
    registry: RegistryOptions = field(default_factory=lambda: RegistryOptions(user_agent=DEFAULT_USER_AGENT))
    repository_override: str = ""
    token_env: str = "SIGSTORE_ID_TOKEN"
    token_file: str = ""

    identity_provider: Optional[IdentityProvider] = None
    signer: Optional[Signer] = None
    verifier: Optional[EnvelopeVerifier] = None
    store: Optional[AttestationStore] = None

    expected_identity: Optional[SignerIdentity] = None
    size_limit: int = STATUS_JSON_SIZE_LIMIT

    @classmethod
    def from_config(cls, config: Optional[StatusManagerConfig] = None, **overrides: Any) -> "ManagerOptions":
        """Build options from layered configuration; keyword overrides win."""
        cfg = config or get_config()
        expected: Optional[SignerIdentity] = None
        subject = cfg.verification.expected_subject.get()
        issuer = cfg.verification.expected_issuer.get()
        if subject or issuer:
            if not (subject and issuer):
                raise ConfigurationError(
                    "verification.expected_subject and verification.expected_issuer must be set together"
                )
            expected = SignerIdentity(subject=subject, issuer=issuer)

        opts = cls(
            instance=cfg.sigstore.instance.get(),
            trust_config=cfg.sigstore.trust_config.get(),
            offline=cfg.sigstore.offline.get(),
            token_env=cfg.sigstore.token_env.get(),
            token_file=cfg.sigstore.token_file.get(),
            registry=RegistryOptions(
                insecure=cfg.registry.insecure.get(),
                timeout_seconds=cfg.registry.timeout_seconds.get(),
                username=cfg.registry.username.get(),
                password=cfg.registry.password.get(),
                user_agent=cfg.registry.user_agent.get(),
            ),
            repository_override=cfg.registry.repository_override.get(),
            expected_identity=expected,
        )
        return replace(opts, **overrides) if overrides else opts


class Manager(Generic[T]):
    """Per-identity status store. Immutable after construction; thread-safe."""

    def __init__(
        self,
        identity: str,
        codec: Optional[StatusCodec[T]] = None,
        options: Optional[ManagerOptions] = None,
        read_only: bool = False,
    ):
        if not str(identity or "").strip():
            raise ConfigurationError("identity is required")
        opts = options or ManagerOptions()
        if opts.size_limit <= 0:
            raise ConfigurationError(f"size_limit must be positive, got {opts.size_limit}")
        if opts.trust_config:
            if not Path(opts.trust_config).is_file():
                raise ConfigurationError(f"sigstore trust config not found: {opts.trust_config}")
        elif opts.instance not in SIGSTORE_INSTANCES:
            raise ConfigurationError(
                f"unknown sigstore instance {opts.instance!r}; expected one of {', '.join(SIGSTORE_INSTANCES)}"
            )

        self._identity = identity
        self._predicate_type = predicate_type_for(identity)
        self._codec: StatusCodec[T] = codec if codec is not None else JsonCodec()  # type: ignore[assignment]
        self._read_only = read_only
        self._size_limit = opts.size_limit
        self._instance = opts.instance
        self._trust_config_path = opts.trust_config
        self._offline = opts.offline

        self._repository_override: Optional[Repository] = None
        if opts.repository_override:
            try:
                self._repository_override = Repository.parse(opts.repository_override)
            except ValueError as ex:
                raise ConfigurationError(f"parsing repository override: {ex}") from ex

        self._trust: Optional[ClientTrustConfig] = None
        self._trust_lock = threading.Lock()

        self._signer: Optional[Signer] = None
        if read_only:
            if opts.expected_identity is None:
                raise ConfigurationError("expected_identity is required for read-only managers")
            self._expected_identity = opts.expected_identity
        else:
            provider = opts.identity_provider or default_identity_provider(opts.token_env, opts.token_file)
            self._signer = opts.signer or SigstoreSigner(provider, self.trust_config)
            self._expected_identity = opts.expected_identity or self._identity_from_token(provider)

        self._verifier: EnvelopeVerifier = opts.verifier or SigstoreVerifier(self.trust_config)
        self._store: AttestationStore = opts.store or RegistryAttestationStore(opts.registry)

        manager_logger.debug(
            "Created status manager",
            identity=identity,
            read_only=read_only,
            expected_identity=str(self._expected_identity),
            repository_override=str(self._repository_override or ""),
            instance=self._trust_config_path or self._instance,
        )

    @staticmethod
    def _identity_from_token(provider: IdentityProvider) -> SignerIdentity:
        try:
            return extract_signer_identity(provider.provide(SIGSTORE_AUDIENCE))
        except (StatusManagerError, ValueError) as ex:
            raise ConfigurationError(f"determining signer identity: {ex}") from ex

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def predicate_type(self) -> str:
        return self._predicate_type

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def expected_identity(self) -> SignerIdentity:
        return self._expected_identity

    @property
    def repository_override(self) -> Optional[Repository]:
        return self._repository_override

    @property
    def size_limit(self) -> int:
        return self._size_limit

    @property
    def codec(self) -> StatusCodec[T]:
        return self._codec

    @property
    def store(self) -> AttestationStore:
        return self._store

    @property
    def signer(self) -> Optional[Signer]:
        return self._signer

    @property
    def verifier(self) -> EnvelopeVerifier:
        return self._verifier

    def trust_config(self) -> ClientTrustConfig:
        """CA roots, log keys and service endpoints, fetched once and memoized."""
        with self._trust_lock:
            if self._trust is None:
                self._trust = load_trust_config(self._instance, self._trust_config_path, self._offline)
                manager_logger.debug(
                    "Loaded sigstore trust config",
                    instance=self._trust_config_path or self._instance,
                    offline=self._offline,
                )
            return self._trust

    def location_for(self, subject: Subject) -> Location:
        return self._store.location(subject.with_repository(self._repository_override))

    def new_session(self, subject: SubjectLike) -> "Session[T]":
        return Session(self, as_subject(subject))


def new(
    identity: str,
    codec: Optional[StatusCodec[T]] = None,
    options: Optional[ManagerOptions] = None,
) -> Manager[T]:
    """A Manager that can read and write status for ``identity``."""
    return Manager(identity, codec, options, read_only=False)


def new_read_only(
    identity: str,
    codec: Optional[StatusCodec[T]] = None,
    options: Optional[ManagerOptions] = None,
) -> Manager[T]:
    """A Manager that can only read; ``options.expected_identity`` is required."""
    return Manager(identity, codec, options, read_only=True)


class Session(Generic[T]):
    """Status access for one subject."""

    def __init__(self, manager: Manager[T], subject: Subject):
        self._manager = manager
        self._subject = subject

    @property
    def subject(self) -> Subject:
        return self._subject

    @property
    def location(self) -> Location:
        return self._manager.location_for(self._subject)

    @timed_operation(session_logger, "observed_state")
    def observed_state(self) -> Optional[Status[T]]:
        """The latest verified status written by this Manager's identity, or None."""
        m = self._manager
        location = self.location
        try:
            envelopes = m.store.fetch_all(location)
        except NotFoundError:
            return None
        if not envelopes:
            return None

        policy = VerificationPolicy(
            verifier=m.verifier,
            identity=m.expected_identity,
            subject_digest=self._subject.digest,
        )
        try:
            verified = verify_envelopes(envelopes, policy)
        except VerificationError as ex:
            session_logger.warning(
                "Failed to verify attestations",
                subject=str(self._subject),
                location=str(location),
                error=str(ex),
            )
            return None

        candidates: List[Candidate[T]] = []
        for v in verified:
            if v.predicate_type != m.predicate_type:
                continue
            try:
                status = self._decode(v)
            except DecodeError as ex:
                session_logger.warning(
                    "Skipping undecodable attestation",
                    subject=str(self._subject),
                    digest=v.signed.digest,
                    error=str(ex),
                )
                continue
            candidates.append(Candidate(status=status, timestamp=v.integrated_at))
        return select_latest(candidates)

    def _decode(self, verified: VerifiedEnvelope) -> Status[T]:
        statement = verified.statement
        if statement.predicate_type != self._manager.predicate_type:
            raise DecodeError(
                f"signed predicate type {statement.predicate_type!r} does not match annotation"
            )
        try:
            return decode_status(statement.predicate, self._manager.codec)
        except Exception as ex:
            raise DecodeError(f"decoding status: {ex}") from ex

    @timed_operation(session_logger, "set_actual_state")
    def set_actual_state(self, status: Optional[Status[T]]) -> None:
        """Sign, log and publish ``status`` for this session's subject.

        ``status.observed_generation`` is overwritten with the subject digest.

        Raises:
            ReadOnlyError: the Manager is read-only.
            InvalidStatusError: ``status`` is None.
            PayloadTooLargeError: the encoded status exceeds the size limit.
            PublishError: a later stage failed; ``stage`` says which.
        """
        m = self._manager
        if m.read_only:
            raise ReadOnlyError()
        if status is None:
            raise InvalidStatusError("status cannot be None")

        status.observed_generation = self._subject.digest
        try:
            payload = canonical_json_bytes(encode_status(status, m.codec))
        except Exception as ex:
            raise PublishError(PublishStage.ENCODE, ex) from ex
        if len(payload) > m.size_limit:
            raise PayloadTooLargeError(len(payload), m.size_limit)

        try:
            statement = new_statement(self._subject, payload, m.predicate_type).to_bytes()
        except Exception as ex:
            raise PublishError(PublishStage.STATEMENT, ex) from ex

        try:
            signed = m.signer.sign(statement)  # type: ignore[union-attr]
        except TransparencyLogError as ex:
            raise PublishError(PublishStage.LOG, ex) from ex
        except Exception as ex:
            raise PublishError(PublishStage.SIGN, ex) from ex

        signed = replace(signed, annotations={**signed.annotations, PREDICATE_TYPE_ANNOTATION: m.predicate_type})
        location = self.location
        try:
            m.store.publish(location, signed, PublishMode.REPLACE)
        except Exception as ex:
            raise PublishError(PublishStage.PUBLISH, ex) from ex

        session_logger.info(
            "Published status",
            subject=str(self._subject),
            location=str(location),
            digest=signed.digest,
            size=len(payload),
        )
