"""Error taxonomy for the compliance audit core.

Every error raised by the engine derives from ComplianceAuditError and carries
a machine-readable ``code`` and a ``severity`` so that callers (HTTP layer,
workers) can map them without string matching.

Severity levels:
- ``fatal`` - programmer or deployment error, never retried
- ``recoverable`` - reported to the caller, the request may be corrected
- ``infrastructure`` - storage failure, retry or surface as unavailable
- ``critical`` - integrity violation, must never be downgraded
"""

from __future__ import annotations

from typing import Any


class ComplianceAuditError(Exception):
    """Base class for all compliance audit core errors."""

    code: str = "compliance_audit_error"
    severity: str = "recoverable"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible representation of the error."""
        return {
            "error": self.code,
            "severity": self.severity,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(ComplianceAuditError):
    """An entity type has no (or a malformed) state machine declaration."""

    code = "configuration_error"
    severity = "fatal"


class InvalidTransitionError(ComplianceAuditError):
    """The attempted transition is not legal from the entity's current state.

    Attributes:
        from_state: The state the entity was in.
        to_state: The target state of the transition, or None when the
            transition name itself is unknown.
        transition_name: The transition that was attempted.
    """

    code = "invalid_transition"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        transition_name: str,
        from_state: str | None,
        to_state: str | None,
        message: str | None = None,
    ) -> None:
        if message is None:
            if to_state is None:
                message = (
                    f"Transition '{transition_name}' is not defined for {entity_type}; "
                    f"not allowed from current state '{from_state}'"
                )
            else:
                message = (
                    f"Transition '{transition_name}' is not allowed from current state "
                    f"'{from_state}' ({from_state} -> {to_state})"
                )
        super().__init__(
            message,
            entity_type=entity_type,
            entity_id=entity_id,
            transition=transition_name,
            from_state=from_state,
            to_state=to_state,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.transition_name = transition_name
        self.from_state = from_state
        self.to_state = to_state


class TransitionVetoedError(InvalidTransitionError):
    """A before-transition hook refused the transition."""

    code = "transition_vetoed"


class InvalidAmountError(ComplianceAuditError):
    """A monetary input is not a non-negative finite number."""

    code = "invalid_amount"

    def __init__(self, value: Any, reason: str) -> None:
        super().__init__(f"Invalid amount {value!r}: {reason}", value=repr(value), reason=reason)
        self.value = value


class PersistenceError(ComplianceAuditError):
    """The storage layer failed or timed out."""

    code = "persistence_error"
    severity = "infrastructure"


class ConcurrencyConflictError(PersistenceError):
    """A compare-and-set write lost against a concurrent writer."""

    code = "concurrency_conflict"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int) -> None:
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(expected version {expected_version})",
            entity_type=entity_type,
            entity_id=entity_id,
            expected_version=expected_version,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version


class NotFoundError(ComplianceAuditError):
    """A requested record does not exist."""

    code = "not_found"

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} '{resource_id}' not found", resource=resource, resource_id=resource_id)
        self.resource = resource
        self.resource_id = resource_id


class SnapshotNotFoundError(NotFoundError):
    """No snapshot exists with the requested id."""

    code = "snapshot_not_found"

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(resource="Snapshot", resource_id=snapshot_id)


class TamperDetectedError(ComplianceAuditError):
    """A stored snapshot no longer matches its content hash or its schema.

    Never a NotFoundError: a tampered record is an integrity incident, not
    an absent one.
    """

    code = "tamper_detected"
    severity = "critical"

    def __init__(
        self,
        snapshot_id: str,
        stored_hash: str,
        computed_hash: str,
        tampered_disclosures: list[str] | None = None,
        reason: str = "content hash mismatch",
    ) -> None:
        super().__init__(
            f"SNAPSHOT INTEGRITY VIOLATION: snapshot {snapshot_id} {reason} "
            f"(stored {stored_hash}, computed {computed_hash})",
            snapshot_id=snapshot_id,
            stored_hash=stored_hash,
            computed_hash=computed_hash,
            tampered_disclosures=tampered_disclosures or [],
            reason=reason,
        )
        self.reason = reason
        self.snapshot_id = snapshot_id
        self.stored_hash = stored_hash
        self.computed_hash = computed_hash
        self.tampered_disclosures = tampered_disclosures or []


class IncompleteSnapshotError(ComplianceAuditError):
    """Snapshot context could not be assembled; nothing was persisted."""

    code = "incomplete_snapshot"

    def __init__(self, subject_id: str, missing: list[str]) -> None:
        super().__init__(
            f"Snapshot for {subject_id} is not available: missing {', '.join(missing)}",
            subject_id=subject_id,
            missing=missing,
        )
        self.subject_id = subject_id
        self.missing = missing
