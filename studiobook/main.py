from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from strawberry.fastapi import GraphQLRouter

from studiobook.core.config import settings
from studiobook.core.exceptions import BookingEngineError
from studiobook.core.logging_config import setup_logging
from studiobook.crud.ticketVerificationCrud import get_ticket_verification
from studiobook.db.postgresql import get_db
from studiobook.graphql.context import build_context
from studiobook.graphql.schema import schema

setup_logging()

app = FastAPI(title=settings.APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

graphql_app = GraphQLRouter(
    schema=schema,
    context_getter=build_context,
    graphql_ide="graphiql" if settings.ENV != "production" else None
)
app.include_router(graphql_app, prefix="/graphql")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/tickets/{token}")
async def verify_ticket_token(token: str, db: AsyncSession = Depends(get_db)):
    """Check-in verification payload; 404 unknown, 410 expired"""
    try:
        verification = await get_ticket_verification(db, token)
    except BookingEngineError as e:
        raise e.to_http_exception() from e
    return verification.to_dict()
