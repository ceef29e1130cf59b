"""
ocistatus: signed reconciliation status for OCI artifacts.

A reconciler records its progress on an immutable artifact as an in-toto
attestation: signed keylessly, recorded in a transparency log and published
next to the artifact in its registry. Reading back verifies every
attestation and returns the most recently integrated status written by the
expected identity, or nothing.

Modules
───────

    manager.py        Manager / Session, new() and new_read_only()
    status.py         Status[T], codecs, latest-wins selection
    subject.py        Subjects, repositories, attestation locations
    envelope.py       in-toto statements and signed sigstore bundles
    identity.py       OIDC identity token providers
    signing.py        Trust config loading and the sigstore keyless signer
    store.py          Registry, local and in-memory attestation stores
    verify.py         sigstore bundle verification and subject claim checks
    testing.py        In-process sigstore fakes and manager helpers

Ambient: config.py, observability.py, errors.py, schema.py, core.py, cli.py.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy import ocistatus modules on first access."""

    # Manager exports
    if name in ("Manager", "Session", "ManagerOptions", "new", "new_read_only",
                "predicate_type_for", "REKOR_HTTP_LIMIT", "STATUS_JSON_SIZE_LIMIT",
                "PREDICATE_TYPE_PREFIX"):
        from ocistatus import manager
        return getattr(manager, name)

    # Status exports
    if name in ("Status", "StatusCodec", "JsonCodec", "DataclassCodec", "CallableCodec"):
        from ocistatus import status
        return getattr(status, name)

    # Subject exports
    if name in ("Subject", "Repository", "Location", "attestation_tag"):
        from ocistatus import subject
        return getattr(subject, name)

    # Identity exports
    if name in ("SignerIdentity", "StaticIdentityProvider", "EnvironmentIdentityProvider",
                "FileIdentityProvider", "AmbientIdentityProvider"):
        from ocistatus import identity
        return getattr(identity, name)

    # Store exports
    if name in ("PublishMode", "RegistryAttestationStore", "RegistryOptions",
                "LocalAttestationStore", "InMemoryAttestationStore"):
        from ocistatus import store
        return getattr(store, name)

    # Envelope exports
    if name in ("Statement", "SignedEnvelope"):
        from ocistatus import envelope
        return getattr(envelope, name)

    # Signing and verification exports
    if name in ("SigstoreSigner", "load_trust_config"):
        from ocistatus import signing
        return getattr(signing, name)

    if name in ("SigstoreVerifier", "VerificationPolicy"):
        from ocistatus import verify
        return getattr(verify, name)

    # Error exports
    if name in ("StatusManagerError", "ConfigurationError", "ReadOnlyError",
                "InvalidStatusError", "PayloadTooLargeError", "PublishError",
                "PublishStage", "SigningError", "TransparencyLogError",
                "TransportError", "NotFoundError"):
        from ocistatus import errors
        return getattr(errors, name)

    raise AttributeError(f"module 'ocistatus' has no attribute '{name}'")
