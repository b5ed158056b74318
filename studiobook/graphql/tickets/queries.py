"""
GraphQL queries for tickets.
"""
import strawberry
from strawberry.types import Info
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.crud.ticketVerificationCrud import get_ticket_verification
from studiobook.graphql.auth.permissions import IsStaff
from studiobook.graphql.errors import failure
from studiobook.graphql.tickets.types import TicketVerification, TicketVerificationResponse


@strawberry.type
class TicketQuery:
    """Ticket queries"""

    @strawberry.field(permission_classes=[IsStaff])
    async def verify_ticket(self, info: Info, token: str) -> TicketVerificationResponse:
        """Check a scanned token without consuming it"""
        db: AsyncSession = info.context.db

        try:
            data = await get_ticket_verification(db, token)
            return TicketVerificationResponse(
                success=True,
                verification=TicketVerification.from_data(data),
                message="Ticket is valid",
            )
        except Exception as e:
            return TicketVerificationResponse(success=False, verification=None, **failure(e))
