"""Visibility invariant enforcer: products are never more visible than their company."""

from __future__ import annotations

from compliance_audit_core.visibility.policy import (
    PRODUCT_PUBLIC_STATUS,
    company_is_public,
    eligible_product_clause,
    product_is_eligible,
    product_is_public,
    public_companies_statement,
    public_company_clause,
    public_products_statement,
    public_products_via_company_statement,
    publicly_visible_companies,
    publicly_visible_products,
    publicly_visible_products_via_companies,
)
from compliance_audit_core.visibility.tiers import (
    PUBLIC_THRESHOLD,
    PUBLIC_TIERS,
    VisibilityTier,
    next_tier,
    parse_tier,
    tier_is_public,
)

__all__ = [
    "PRODUCT_PUBLIC_STATUS",
    "PUBLIC_THRESHOLD",
    "PUBLIC_TIERS",
    "VisibilityTier",
    "company_is_public",
    "eligible_product_clause",
    "next_tier",
    "parse_tier",
    "product_is_eligible",
    "product_is_public",
    "public_companies_statement",
    "public_company_clause",
    "public_products_statement",
    "public_products_via_company_statement",
    "publicly_visible_companies",
    "publicly_visible_products",
    "publicly_visible_products_via_companies",
    "tier_is_public",
]
