import asyncio
import os
import sys

# Add parent dir to path to find config/database
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, async_session_maker, engine
import models  # noqa: F401
from services.credit_packages import list_active_packages, seed_default_packages


async def seed_credit_packages_async():
    print("🌱 Seeding default credit packages...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as session:
        created = await seed_default_packages(session)
        packages = await list_active_packages(session)

    print(f"✅ Created {created} package(s). Active catalog:")
    for package in packages:
        product = package.external_product_id or "no payment product linked"
        print(f"   - {package.name}: {package.credits} credits for {package.price_in_cents} cents ({product})")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_credit_packages_async())
