"""
Ports to the collaborators the lot engine consults but does not own.

The catalog resolves a product to its family, pricing category and detail
breakdown ratio (how many sellable detail units one stock unit holds).  The
identity service resolves an acting agent to a display name for audit
attribution.  Both are read-only.

The in-memory adapters are used by the test suite and by hosts that load
their catalog up front:

    catalog = InMemoryCatalog([
        ProductInfo("doliprane-1000", family_id="antalgiques", detail_breakdown_ratio=Decimal(8)),
    ])
    fifo = FIFOService(session, catalog=catalog)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID


@dataclass(frozen=True)
class ProductInfo:
    """Catalog facts about one product."""

    product_id: str
    family_id: str | None = None
    pricing_category: str | None = None
    detail_breakdown_ratio: Decimal = Decimal(1)

    def __post_init__(self) -> None:
        if self.detail_breakdown_ratio <= 0:
            raise ValueError(
                f"detail_breakdown_ratio must be positive, got {self.detail_breakdown_ratio}"
            )


@runtime_checkable
class CatalogService(Protocol):
    """Read-only product lookup."""

    def get_product(self, product_id: str) -> ProductInfo | None: ...


@runtime_checkable
class IdentityService(Protocol):
    """Read-only agent lookup."""

    def display_name(self, agent_id: UUID) -> str | None: ...


class InMemoryCatalog:
    def __init__(self, products: Iterable[ProductInfo] = ()):
        self._products = {p.product_id: p for p in products}

    def register(self, product: ProductInfo) -> None:
        self._products[product.product_id] = product

    def get_product(self, product_id: str) -> ProductInfo | None:
        return self._products.get(product_id)


class InMemoryIdentity:
    def __init__(self, names: Mapping[UUID, str] | None = None):
        self._names = dict(names or {})

    def register(self, agent_id: UUID, name: str) -> None:
        self._names[agent_id] = name

    def display_name(self, agent_id: UUID) -> str | None:
        return self._names.get(agent_id)


def product_info(catalog: CatalogService | None, product_id: str) -> ProductInfo:
    """Catalog entry for ``product_id``; a product the catalog does not know has no family."""
    found = catalog.get_product(product_id) if catalog is not None else None
    return found or ProductInfo(product_id)
