"""
GraphQL queries for plans.
"""
import strawberry
from strawberry.types import Info
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from studiobook.core.exceptions import BookingEngineError
from studiobook.crud.planCreditsCrud import get_client_plans, get_eligible_plans
from studiobook.graphql.auth.permissions import IsAuthenticated
from studiobook.graphql.errors import logger
from studiobook.graphql.plans.types import PlanPurchase


@strawberry.type
class PlanQuery:
    """Plan queries"""

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def client_plans(
        self,
        info: Info,
        client_id: int,
        include_inactive: bool = False
    ) -> List[PlanPurchase]:
        """Plans owned by a client"""
        db: AsyncSession = info.context.db
        if not info.context.actor.can_act_for(client_id):
            return []
        plans = await get_client_plans(db, client_id, include_inactive=include_inactive)
        return [PlanPurchase.from_data(plan) for plan in plans]

    @strawberry.field(permission_classes=[IsAuthenticated])
    async def eligible_plans(self, info: Info, client_id: int, session_id: int) -> List[PlanPurchase]:
        """Plans that could pay for a booking in the session"""
        db: AsyncSession = info.context.db
        actor = info.context.actor
        if not actor.can_act_for(client_id):
            return []
        try:
            plans = await get_eligible_plans(db, client_id, session_id, actor=actor)
        except BookingEngineError as e:
            logger.info("Eligible plans lookup failed: %s", e.message)
            return []
        return [PlanPurchase.from_data(plan) for plan in plans]
