"""Domain entities and their static state machine definitions."""

from __future__ import annotations

from compliance_audit_core.domain.definitions import (
    ADMIN_ROLES,
    COMPANY,
    DEFINITIONS,
    DISCLOSURE,
    INVESTMENT,
    INVESTMENT_MONEY,
    PRODUCT,
    authorize_promotion,
    build_registry,
)
from compliance_audit_core.domain.entities import Company, Disclosure, Investment, Product, persisted_values

__all__ = [
    "ADMIN_ROLES",
    "COMPANY",
    "Company",
    "DEFINITIONS",
    "DISCLOSURE",
    "Disclosure",
    "INVESTMENT",
    "INVESTMENT_MONEY",
    "Investment",
    "PRODUCT",
    "Product",
    "authorize_promotion",
    "build_registry",
    "persisted_values",
]
