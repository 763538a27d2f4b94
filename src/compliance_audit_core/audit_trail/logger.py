"""Best-effort audit logging for secondary concerns.

Used after a primary write has already committed (e.g. a plain entity save).
An audit failure here must not fail the caller's request, but it must never
disappear either: it is logged at error level and counted in
``audit_append_failures_total`` so operators can see audit gaps.
"""

from __future__ import annotations

from typing import Any

from compliance_audit_core.audit_trail.events import ActorContext, AuditEvent, make_event
from compliance_audit_core.audit_trail.trail import AuditTrail
from compliance_audit_core.observability import AuditMetrics, get_logger
from compliance_audit_core.observability import metrics as default_metrics

logger = get_logger(__name__)


def diff_values(
    old_values: dict[str, Any],
    new_values: dict[str, Any],
    ignore: set[str] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return the (old, new) subsets of fields whose values differ."""
    ignored = ignore or set()
    changed = {
        key
        for key in set(old_values) | set(new_values)
        if key not in ignored and old_values.get(key) != new_values.get(key)
    }
    return (
        {key: old_values.get(key) for key in sorted(changed)},
        {key: new_values.get(key) for key in sorted(changed)},
    )


class AuditLogger:
    """Best-effort audit writer.

    Args:
        trail: The AuditTrail that performs the actual append.
        metrics: Metrics holder; defaults to the process-wide instance.
    """

    def __init__(self, trail: AuditTrail, metrics: AuditMetrics | None = None) -> None:
        self._trail = trail
        self._metrics = metrics or default_metrics

    async def log(
        self,
        actor: ActorContext | None,
        entity_type: str,
        entity_id: str,
        action: str,
        module: str,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Append an audit event, absorbing store failures.

        Returns:
            The appended event, or None if the append failed.
        """
        event = make_event(
            actor=actor,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            module=module,
            old_values=old_values,
            new_values=new_values,
            description=description,
            metadata=metadata,
        )
        try:
            await self._trail.append(event)
        except Exception as exc:  # noqa: BLE001
            self._metrics.audit_append_failures.labels(entity_type=entity_type, action=action).inc()
            logger.error(
                "Audit append failed; primary operation unaffected",
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None
        return event

    async def log_field_changes(
        self,
        actor: ActorContext | None,
        entity_type: str,
        entity_id: str,
        module: str,
        old_values: dict[str, Any],
        new_values: dict[str, Any],
        action: str | None = None,
        description: str = "",
        metadata: dict[str, Any] | None = None,
        ignore: set[str] | None = None,
    ) -> AuditEvent | None:
        """Log only the fields that actually changed.

        Returns:
            The appended event, or None when nothing changed or the append
            failed.
        """
        old_changed, new_changed = diff_values(old_values, new_values, ignore=ignore)
        if not new_changed:
            return None
        return await self.log(
            actor=actor,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action or f"{entity_type}.updated",
            module=module,
            old_values=old_changed,
            new_values=new_changed,
            description=description or f"{entity_type} {entity_id} updated: {', '.join(new_changed)}",
            metadata=metadata,
        )
