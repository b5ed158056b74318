"""
Shared fixtures: a throwaway SQLite database per test and small factories
for catalog rows the engine only reads.
"""
import os

# Before any studiobook import
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.pop("DB_SCHEMA", None)

from datetime import date, timedelta
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from studiobook.auth.actor import Actor
from studiobook.core.conversions import utc_today, utcnow
from studiobook.db.postgresql import Base
from studiobook.models import (
    Booking, BookingStatus, ClassSession, Course, PlanModality, PlanPurchase,
    PlanStatus, PlanType
)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'studio.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def staff():
    return Actor.staff(900)


class StudioFactory:
    """Inserts catalog and plan rows in their own committed sessions"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _save(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def course(
        self,
        name: str = "Reformer Pilates",
        category: Optional[str] = None,
        booking_window_days: Optional[int] = None,
        cancellation_window_hours: Optional[int] = None,
    ) -> Course:
        return await self._save(Course(
            name=name,
            category=category,
            booking_window_days=booking_window_days,
            cancellation_window_hours=cancellation_window_hours,
        ))

    async def class_session(
        self,
        *,
        course: Optional[Course] = None,
        capacity: int = 10,
        starts_in: timedelta = timedelta(days=2),
        duration: timedelta = timedelta(hours=1),
        status: str = "scheduled",
        name: str = "Morning class",
    ) -> ClassSession:
        start = utcnow() + starts_in
        return await self._save(ClassSession(
            course_id=course.id if course else None,
            name=name,
            start_at=start,
            end_at=start + duration,
            capacity=capacity,
            status=status,
        ))

    async def plan_type(
        self,
        *,
        class_count: Optional[int] = 10,
        validity_days: Optional[int] = 30,
        category: Optional[str] = None,
        app_only: bool = False,
        name: str = "10 classes",
    ) -> PlanType:
        return await self._save(PlanType(
            name=name,
            class_count=class_count,
            validity_days=validity_days,
            category=category,
            app_only=app_only,
        ))

    async def plan(
        self,
        client_id: int,
        *,
        classes: Optional[int] = 10,
        remaining: Optional[int] = None,
        expires_in_days: Optional[int] = 30,
        start_date: Optional[date] = None,
        modality: str = PlanModality.FLEXIBLE,
        status: str = PlanStatus.ACTIVE,
        category: Optional[str] = None,
        app_only: bool = False,
        course_id: Optional[int] = None,
        purchased_ago: timedelta = timedelta(days=1),
    ) -> PlanPurchase:
        plan_type = await self.plan_type(class_count=classes, category=category, app_only=app_only)
        today = utc_today()
        return await self._save(PlanPurchase(
            client_id=client_id,
            plan_type_id=plan_type.id,
            modality=modality,
            status=status,
            initial_classes=classes,
            remaining_classes=(classes or 0) if remaining is None else remaining,
            start_date=start_date or today,
            expires_at=today + timedelta(days=expires_in_days) if expires_in_days is not None else None,
            course_id=course_id,
            purchased_at=utcnow() - purchased_ago,
        ))

    async def booking(
        self,
        session: ClassSession,
        client_id: int,
        status: str = BookingStatus.CONFIRMED,
    ) -> Booking:
        return await self._save(Booking(
            session_id=session.id,
            client_id=client_id,
            status=status,
            source="client",
        ))


@pytest.fixture
def factory(session_factory):
    return StudioFactory(session_factory)
