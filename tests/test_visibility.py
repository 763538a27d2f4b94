"""Tests for the company/product visibility invariant.

The same four-company scenario is checked through the in-memory predicates
and through the SQL statements against SQLite; every path must agree.
"""

from collections.abc import Iterator
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from compliance_audit_core.core.models import Base, CompanyRecord, ProductRecord
from compliance_audit_core.domain.entities import Company, Product
from compliance_audit_core.visibility import (
    PUBLIC_TIERS,
    VisibilityTier,
    company_is_public,
    next_tier,
    parse_tier,
    product_is_public,
    public_companies_statement,
    public_products_statement,
    public_products_via_company_statement,
    publicly_visible_companies,
    publicly_visible_products,
    publicly_visible_products_via_companies,
    tier_is_public,
)

COMPANIES = [
    ("co-pending", "tier_0_pending"),
    ("co-upcoming", "tier_1_upcoming"),
    ("co-live", "tier_2_live"),
    ("co-featured", "tier_3_featured"),
    ("co-untiered", None),
]

# One approved product per company, plus an unapproved one under the live company.
PRODUCTS = [(f"pr-{company_id}", company_id, "approved") for company_id, _ in COMPANIES] + [
    ("pr-co-live-draft", "co-live", "submitted")
]

EXPECTED_PUBLIC_PRODUCTS = ["pr-co-featured", "pr-co-live"]


def scenario() -> tuple[list[Company], list[Product]]:
    companies = [Company(name=company_id, disclosure_tier=tier, id=company_id) for company_id, tier in COMPANIES]
    products = [
        Product(company_id=company_id, name=product_id, status=status, id=product_id)
        for product_id, company_id, status in PRODUCTS
    ]
    return companies, products


def ids(items: list[Any]) -> list[str]:
    return sorted(item.id for item in items)


@pytest.fixture()
def sql_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add_all(
            [CompanyRecord(id=company_id, name=company_id, disclosure_tier=tier) for company_id, tier in COMPANIES]
        )
        session.flush()
        session.add_all(
            [
                ProductRecord(id=product_id, company_id=company_id, name=product_id, status=status)
                for product_id, company_id, status in PRODUCTS
            ]
        )
        session.commit()
    yield engine
    engine.dispose()


class TestTiers:
    """Tests for tier parsing and the public threshold."""

    def test_public_tiers_start_at_live(self) -> None:
        assert PUBLIC_TIERS == frozenset({"tier_2_live", "tier_3_featured"})

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("tier_0_pending", False),
            ("tier_1_upcoming", False),
            ("tier_2_live", True),
            ("tier_3_featured", True),
            (VisibilityTier.LIVE, True),
            (None, False),
            ("", False),
            ("tier_9_unknown", False),
            (2, False),
        ],
    )
    def test_tier_is_public_fails_closed(self, value: Any, expected: bool) -> None:
        assert tier_is_public(value) is expected

    def test_parse_tier(self) -> None:
        assert parse_tier("tier_1_upcoming") is VisibilityTier.UPCOMING
        assert parse_tier("gold") is None

    def test_ordering(self) -> None:
        assert VisibilityTier.PENDING.rank < VisibilityTier.FEATURED.rank
        assert next_tier(VisibilityTier.UPCOMING) is VisibilityTier.LIVE
        assert next_tier(VisibilityTier.FEATURED) is None
        assert VisibilityTier.FEATURED.label == "Featured"


class TestInMemoryPredicates:
    """Tests for the Python-side visibility filters."""

    def test_public_companies(self) -> None:
        companies, _ = scenario()
        assert ids(publicly_visible_companies(companies)) == ["co-featured", "co-live"]

    def test_direct_and_joined_paths_agree(self) -> None:
        companies, products = scenario()

        direct = publicly_visible_products(products, companies)
        joined = publicly_visible_products_via_companies(companies, products)

        assert ids(direct) == ids(joined) == EXPECTED_PUBLIC_PRODUCTS

    def test_persisted_rows_accepted_on_both_paths(self) -> None:
        company_rows = [{"id": company_id, "disclosure_tier": tier} for company_id, tier in COMPANIES]
        product_rows = [
            {"id": product_id, "company_id": company_id, "status": status}
            for product_id, company_id, status in PRODUCTS
        ]

        direct = publicly_visible_products(product_rows, company_rows)
        joined = publicly_visible_products_via_companies(company_rows, product_rows)

        assert sorted(row["id"] for row in publicly_visible_companies(company_rows)) == ["co-featured", "co-live"]
        assert sorted(row["id"] for row in direct) == sorted(row["id"] for row in joined) == EXPECTED_PUBLIC_PRODUCTS

    def test_product_never_more_visible_than_company(self) -> None:
        companies, products = scenario()
        by_id = {company.id: company for company in companies}
        for product in products:
            if product_is_public(product, by_id[product.company_id]):
                assert company_is_public(by_id[product.company_id])

    def test_orphan_or_mismatched_company_is_not_public(self) -> None:
        live = Company(name="Live", disclosure_tier="tier_2_live", id="co-live")
        product = Product(company_id="co-other", name="Fund", status="approved")
        assert product_is_public(product, None) is False
        assert product_is_public(product, live) is False

    def test_demotion_hides_products(self) -> None:
        companies, products = scenario()
        for company in companies:
            if company.id == "co-featured":
                company.disclosure_tier = "tier_1_upcoming"
        assert ids(publicly_visible_products(products, companies)) == ["pr-co-live"]


class TestSqlStatements:
    """Tests for the SQLAlchemy visibility statements."""

    def test_public_companies_statement(self, sql_engine: Engine) -> None:
        with Session(sql_engine) as session:
            rows = session.scalars(public_companies_statement()).all()
        assert [row.id for row in rows] == ["co-featured", "co-live"]

    def test_direct_and_joined_statements_agree(self, sql_engine: Engine) -> None:
        with Session(sql_engine) as session:
            direct = session.scalars(public_products_statement()).all()
            joined = session.scalars(public_products_via_company_statement()).all()

        assert [row.id for row in direct] == [row.id for row in joined] == EXPECTED_PUBLIC_PRODUCTS

    def test_sql_matches_in_memory(self, sql_engine: Engine) -> None:
        companies, products = scenario()
        with Session(sql_engine) as session:
            sql_ids = [row.id for row in session.scalars(public_products_statement()).all()]
        assert sql_ids == ids(publicly_visible_products(products, companies))

    def test_null_tier_excluded(self, sql_engine: Engine) -> None:
        with Session(sql_engine) as session:
            rows = session.scalars(public_products_via_company_statement()).all()
        assert "pr-co-untiered" not in [row.id for row in rows]
        assert "pr-co-live-draft" not in [row.id for row in rows]
