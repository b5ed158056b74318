from dataclasses import dataclass
from typing import Optional

from strawberry.fastapi import BaseContext
from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.auth.actor import Actor
from studiobook.auth.jwt import actor_from_token
from studiobook.db.postgresql import get_db


@dataclass
class Context(BaseContext):
    db: AsyncSession
    request: Request
    response: Response
    actor: Optional[Actor] = None


def _access_token(request: Request) -> Optional[str]:
    token = request.headers.get("x-access-token")
    if token:
        return token
    authorization = request.headers.get("Authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


async def build_context(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> Context:
    actor = actor_from_token(_access_token(request))
    return Context(db=db, request=request, response=response, actor=actor)
