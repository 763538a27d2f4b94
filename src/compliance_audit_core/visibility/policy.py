"""Public visibility policy for companies and their products.

One predicate decides public visibility everywhere:

- a company is public iff its tier is in PUBLIC_TIERS
- a product is public iff it is approved AND its company is public

Both the in-memory filters and the SQLAlchemy clauses below are built from
PUBLIC_TIERS and PRODUCT_PUBLIC_STATUS, so a direct product query and a query
joined through the company can never disagree. The filters accept entity
objects as well as persisted rows (mappings).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import ColumnElement, Select, and_, select

from compliance_audit_core.core.models import CompanyRecord, ProductRecord
from compliance_audit_core.visibility.tiers import PUBLIC_TIERS, tier_is_public

PRODUCT_PUBLIC_STATUS = "approved"
COMPANY_TIER_FIELD = "disclosure_tier"


def field_value(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def company_is_public(company: Any) -> bool:
    """Return True if the company's tier is at or above the public threshold."""
    if company is None:
        return False
    return tier_is_public(field_value(company, COMPANY_TIER_FIELD))


def product_is_eligible(product: Any) -> bool:
    """The product's own eligibility, independent of its company."""
    return field_value(product, "status") == PRODUCT_PUBLIC_STATUS


def product_is_public(product: Any, company: Any) -> bool:
    """Return True if the product is eligible and its company is public.

    Args:
        product: Product carrying ``status`` and ``company_id``.
        company: The product's company, or None when it cannot be found.
    """
    if company is None or field_value(company, "id") != field_value(product, "company_id"):
        return False
    return product_is_eligible(product) and company_is_public(company)


def publicly_visible_companies(companies: Iterable[Any]) -> list[Any]:
    """Filter companies down to the publicly visible ones."""
    return [company for company in companies if company_is_public(company)]


def publicly_visible_products(products: Iterable[Any], companies: Iterable[Any]) -> list[Any]:
    """Direct path: filter products, looking each one's company up by id."""
    companies_by_id: Mapping[Any, Any] = {field_value(company, "id"): company for company in companies}
    return [
        product
        for product in products
        if product_is_public(product, companies_by_id.get(field_value(product, "company_id")))
    ]


def publicly_visible_products_via_companies(companies: Iterable[Any], products: Iterable[Any]) -> list[Any]:
    """Joined path: start from public companies and collect their public products."""
    public_by_id = {field_value(company, "id"): company for company in publicly_visible_companies(companies)}
    return [
        product
        for product in products
        if field_value(product, "company_id") in public_by_id
        and product_is_public(product, public_by_id[field_value(product, "company_id")])
    ]


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------


def public_company_clause() -> ColumnElement[bool]:
    """WHERE clause selecting public companies. NULL tiers never match."""
    return CompanyRecord.disclosure_tier.in_(sorted(PUBLIC_TIERS))


def eligible_product_clause() -> ColumnElement[bool]:
    return ProductRecord.status == PRODUCT_PUBLIC_STATUS


def public_companies_statement() -> Select[tuple[CompanyRecord]]:
    return select(CompanyRecord).where(public_company_clause()).order_by(CompanyRecord.id)


def public_products_statement() -> Select[tuple[ProductRecord]]:
    """Direct product query filtered by a public-company subquery."""
    public_company_ids = select(CompanyRecord.id).where(public_company_clause())
    return (
        select(ProductRecord)
        .where(and_(eligible_product_clause(), ProductRecord.company_id.in_(public_company_ids)))
        .order_by(ProductRecord.id)
    )


def public_products_via_company_statement() -> Select[tuple[ProductRecord]]:
    """Product query joined through the company table."""
    return (
        select(ProductRecord)
        .join(CompanyRecord, ProductRecord.company_id == CompanyRecord.id)
        .where(and_(public_company_clause(), eligible_product_clause()))
        .order_by(ProductRecord.id)
    )
