"""
Development seeding for the tracking backend.

Creates a driver, a passenger and one live-trackable schedule, and prints
access tokens for both users so the tracking channel can be exercised
locally (the real platform issues tokens from its auth service).
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from busline.app.core.jwt import create_access_token
from busline.app.db.session import AsyncSessionLocal, create_tables
from busline.app.models.enums import UserRole
from busline.app.models.schedule import Schedule
from busline.app.models.user import User


def _token_for(user: User) -> str:
    return create_access_token(
        data={"sub": user.username, "user_id": user.id, "role": user.role.value},
        expires_delta=timedelta(hours=12),
    )


async def seed_tracking():
    """
    Seed one driver, one passenger and a schedule driven by the driver.

    Safe to run twice: existing rows are reused.
    """
    await create_tables()

    async with AsyncSessionLocal() as db:
        print("🌱 Seeding tracking data...")

        result = await db.execute(select(User).where(User.username == "driver"))
        driver = result.scalar_one_or_none()
        if driver is None:
            driver = User(
                email="driver@busline.dev",
                username="driver",
                full_name="Kwame Mensah",
                role=UserRole.DRIVER,
                is_active=True,
            )
            db.add(driver)

        result = await db.execute(select(User).where(User.username == "passenger"))
        passenger = result.scalar_one_or_none()
        if passenger is None:
            passenger = User(
                email="passenger@busline.dev",
                username="passenger",
                full_name="Ama Owusu",
                role=UserRole.PASSENGER,
                is_active=True,
            )
            db.add(passenger)

        await db.flush()

        result = await db.execute(select(Schedule).where(Schedule.driver_id == driver.id))
        schedule = result.scalars().first()
        if schedule is None:
            schedule = Schedule(
                driver_id=driver.id,
                route_name="Circle - Madina",
                departure_time=datetime.now(timezone.utc) + timedelta(hours=1),
            )
            db.add(schedule)

        await db.commit()

        print(f"✅ Schedule {schedule.id}: {schedule.route_name}")
        print(f"\nDRIVER token ({driver.username}, id {driver.id}):\n  {_token_for(driver)}")
        print(f"\nPASSENGER token ({passenger.username}, id {passenger.id}):\n  {_token_for(passenger)}")


if __name__ == "__main__":
    asyncio.run(seed_tracking())
