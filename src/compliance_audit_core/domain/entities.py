"""Domain entities governed by the state machine.

Plain dataclasses: each declares its registry key in ``entity_type`` and
carries the ``version`` counter used for optimistic concurrency. State
fields are only changed through StateMachine.transition().
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, ClassVar


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Company:
    entity_type: ClassVar[str] = "company"

    name: str
    disclosure_tier: str | None = "tier_0_pending"
    id: str = field(default_factory=_new_id)
    version: int = 0


@dataclass
class Product:
    entity_type: ClassVar[str] = "product"

    company_id: str
    name: str
    status: str = "draft"
    id: str = field(default_factory=_new_id)
    version: int = 0


@dataclass
class Investment:
    """An investor's purchase in a company.

    ``amount``/``fee`` are the decimal convenience forms; ``amount_paise``/
    ``fee_paise`` are authoritative.
    """

    entity_type: ClassVar[str] = "investment"

    company_id: str
    investor_id: str
    status: str = "pending"
    amount: Decimal | None = None
    amount_paise: int | None = None
    fee: Decimal | None = None
    fee_paise: int | None = None
    id: str = field(default_factory=_new_id)
    version: int = 0


@dataclass
class Disclosure:
    entity_type: ClassVar[str] = "disclosure"

    company_id: str
    module_code: str
    status: str = "draft"
    id: str = field(default_factory=_new_id)
    version: int = 0


def persisted_values(entity: Any) -> dict[str, Any]:
    """Return every dataclass field except ``version``."""
    return {
        item.name: getattr(entity, item.name)
        for item in dataclasses.fields(entity)
        if item.name != "version"
    }
