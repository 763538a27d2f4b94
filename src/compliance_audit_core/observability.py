"""Structured logging and operational metrics.

Logging uses structlog with keyword context on every event::

    logger = get_logger(__name__)
    logger.info("Audit event appended", event_id=event.id, entity_type="company")

Metrics are Prometheus counters held in a dedicated CollectorRegistry so the
process-wide default registry is never polluted and tests can inject their
own registry.
"""

from __future__ import annotations

import logging

import structlog
from prometheus_client import CollectorRegistry, Counter, generate_latest
from structlog.typing import Processor

METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def configure_logging(log_format: str = "json", log_level: str = "INFO") -> None:
    """Configure structlog for the process.

    Args:
        log_format: ``json`` for machine-readable output, anything else for
            the coloured development console renderer.
        log_level: Minimum level name (DEBUG, INFO, WARNING, ...).
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    final_processor: Processor
    if log_format == "json":
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger bound to the given module name."""
    return structlog.get_logger(name)


class AuditMetrics:
    """Operational counters for the audit core.

    Attributes:
        audit_append_failures: Best-effort audit appends that failed. A
            non-zero rate means the audit trail has gaps.
        snapshot_tamper_detections: Snapshot verifications that found a
            content hash mismatch.
        transitions_total: Committed state transitions by entity type.
        transition_hook_failures: After-transition hooks that raised.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.audit_append_failures = Counter(
            name="audit_append_failures_total",
            documentation="Best-effort audit trail appends that failed",
            labelnames=["entity_type", "action"],
            registry=self.registry,
        )
        self.snapshot_tamper_detections = Counter(
            name="snapshot_tamper_detections_total",
            documentation="Snapshot verifications that detected a content hash mismatch",
            registry=self.registry,
        )
        self.transitions_total = Counter(
            name="state_transitions_total",
            documentation="Committed state transitions",
            labelnames=["entity_type", "transition"],
            registry=self.registry,
        )
        self.transition_hook_failures = Counter(
            name="state_transition_hook_failures_total",
            documentation="After-transition hooks that raised after commit",
            labelnames=["entity_type", "transition"],
            registry=self.registry,
        )

    def render(self) -> bytes:
        """Return the registry in Prometheus exposition format."""
        return generate_latest(self.registry)


metrics = AuditMetrics()
