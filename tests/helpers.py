"""Read-back helpers that use their own session so results are never cached."""
from sqlalchemy import func, select

from studiobook.models import PlanPurchase


async def fetch_remaining(session_factory, plan_id: int) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(PlanPurchase.remaining_classes).where(PlanPurchase.id == plan_id)
        )
        return result.scalar_one()


async def count_rows(session_factory, model, *criteria) -> int:
    async with session_factory() as session:
        stmt = select(func.count()).select_from(model)
        if criteria:
            stmt = stmt.where(*criteria)
        result = await session.execute(stmt)
        return result.scalar_one()


async def fetch_one(session_factory, model, *criteria):
    async with session_factory() as session:
        result = await session.execute(select(model).where(*criteria))
        return result.scalars().first()


async def fetch_all(session_factory, model, *criteria, order_by=None):
    async with session_factory() as session:
        stmt = select(model).where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        result = await session.execute(stmt)
        return list(result.scalars().all())
