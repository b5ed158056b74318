"""
GraphQL mutations for waitlists.
"""
import strawberry
from strawberry.types import Info
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.exceptions import NotFoundError
from studiobook.crud.waitlistCrud import join_waitlist, leave_waitlist
from studiobook.graphql.auth.permissions import IsAuthenticated, ensure_can_act_for
from studiobook.graphql.errors import failure
from studiobook.graphql.waitlist.types import (
    JoinWaitlistInput,
    LeaveWaitlistInput,
    WaitlistEntry,
    WaitlistJoinResponse,
    WaitlistLeaveResponse,
)
from studiobook.models import WaitlistEntry as WaitlistEntryModel


@strawberry.type
class WaitlistMutation:
    """Waitlist mutations"""

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def join_waitlist(self, info: Info, input: JoinWaitlistInput) -> WaitlistJoinResponse:
        """Queue for a full session"""
        db: AsyncSession = info.context.db

        try:
            ensure_can_act_for(info.context.actor, input.client_id)
            result = await join_waitlist(db, input.session_id, input.client_id)
            return WaitlistJoinResponse(
                success=True,
                entry=WaitlistEntry.from_data(result.entry),
                message="Joined waitlist" if result.created else "Already on the waitlist",
                waitlist_count=result.waitlist_count,
            )
        except Exception as e:
            await db.rollback()
            return WaitlistJoinResponse(success=False, entry=None, **failure(e))

    @strawberry.mutation(permission_classes=[IsAuthenticated])
    async def leave_waitlist(self, info: Info, input: LeaveWaitlistInput) -> WaitlistLeaveResponse:
        """Withdraw from a waitlist"""
        db: AsyncSession = info.context.db

        try:
            client_id = input.client_id
            if input.entry_id is not None:
                entry = (await db.execute(
                    select(WaitlistEntryModel).where(WaitlistEntryModel.id == input.entry_id)
                )).scalar_one_or_none()
                if entry is None:
                    raise NotFoundError("Waitlist entry not found", details={"entry_id": input.entry_id})
                client_id = entry.client_id
            if client_id is not None:
                ensure_can_act_for(info.context.actor, client_id)

            result = await leave_waitlist(
                db,
                entry_id=input.entry_id,
                session_id=input.session_id,
                client_id=input.client_id,
            )
            return WaitlistLeaveResponse(
                success=True,
                removed=result.removed,
                message="Left waitlist",
                waitlist_count=result.waitlist_count,
            )
        except Exception as e:
            await db.rollback()
            return WaitlistLeaveResponse(success=False, removed=False, **failure(e))
