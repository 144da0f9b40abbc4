"""Read access to the credit package catalog."""

from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_package import CreditPackage


DEFAULT_PACKAGES: List[Dict[str, Any]] = [
    {
        "name": "Starter",
        "credits": 5,
        "price_in_cents": 500,
        "sort_order": 1,
        "metadata": {"description": "Perfect for trying out", "popular": False},
    },
    {
        "name": "Popular",
        "credits": 15,
        "price_in_cents": 1500,
        "sort_order": 2,
        "metadata": {"description": "Most popular choice", "popular": True},
    },
    {
        "name": "Pro",
        "credits": 50,
        "price_in_cents": 4500,
        "sort_order": 3,
        "metadata": {"description": "Best value - save 10%", "popular": False, "savings": "10%"},
    },
]


def serialize_package(package: CreditPackage) -> Dict[str, Any]:
    return {
        "id": package.id,
        "name": package.name,
        "credits": package.credits,
        "price_in_cents": package.price_in_cents,
        "external_product_id": package.external_product_id,
        "metadata": package.metadata_json,
    }


async def list_active_packages(db: AsyncSession) -> List[CreditPackage]:
    result = await db.execute(
        select(CreditPackage)
        .where(CreditPackage.is_active.is_(True))
        .order_by(CreditPackage.sort_order, CreditPackage.name)
    )
    return list(result.scalars().all())


async def find_package_by_product(db: AsyncSession, external_product_id: str) -> Optional[CreditPackage]:
    result = await db.execute(
        select(CreditPackage).where(CreditPackage.external_product_id == external_product_id).limit(1)
    )
    return result.scalar_one_or_none()


async def seed_default_packages(db: AsyncSession) -> int:
    """Insert the default catalog rows that are missing by name."""
    existing = await db.execute(select(CreditPackage.name))
    names = {name for name in existing.scalars().all()}
    created = 0
    for entry in DEFAULT_PACKAGES:
        if entry["name"] in names:
            continue
        db.add(
            CreditPackage(
                name=entry["name"],
                credits=entry["credits"],
                price_in_cents=entry["price_in_cents"],
                sort_order=entry["sort_order"],
                is_active=True,
                metadata_json=entry["metadata"],
            )
        )
        created += 1
    await db.commit()
    return created
