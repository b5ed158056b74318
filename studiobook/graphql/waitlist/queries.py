"""
GraphQL queries for waitlists.
"""
import strawberry
from strawberry.types import Info
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from studiobook.crud.waitlistCrud import get_session_waitlist
from studiobook.graphql.auth.permissions import IsStaff
from studiobook.graphql.waitlist.types import WaitlistEntry


@strawberry.type
class WaitlistQuery:
    """Waitlist queries"""

    @strawberry.field(permission_classes=[IsStaff])
    async def session_waitlist(
        self,
        info: Info,
        session_id: int,
        include_inactive: bool = False
    ) -> List[WaitlistEntry]:
        """Queue of a session in position order"""
        db: AsyncSession = info.context.db
        entries = await get_session_waitlist(db, session_id, include_inactive=include_inactive)
        return [WaitlistEntry.from_data(entry) for entry in entries]
