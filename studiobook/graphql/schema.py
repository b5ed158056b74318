import strawberry

from studiobook.graphql.bookings.mutations import BookingMutation
from studiobook.graphql.bookings.queries import BookingQuery
from studiobook.graphql.plans.mutations import PlanMutation
from studiobook.graphql.plans.queries import PlanQuery
from studiobook.graphql.tickets.queries import TicketQuery
from studiobook.graphql.waitlist.mutations import WaitlistMutation
from studiobook.graphql.waitlist.queries import WaitlistQuery


@strawberry.type
class Query(BookingQuery, WaitlistQuery, PlanQuery, TicketQuery):
    pass


@strawberry.type
class Mutation(BookingMutation, WaitlistMutation, PlanMutation):
    pass


schema = strawberry.Schema(query=Query, mutation=Mutation)
