"""Public and private message endpoints.

/api/public is listed in the auth middleware's public paths. /api/private
is Secured: it only runs once the bearer token has been verified.
"""

from typing import Annotated

from fastapi import APIRouter

from tokengate.auth.middleware import Principal, Secured

router = APIRouter()

PUBLIC_MESSAGE = (
    "Hello from a public endpoint! You don't need to be authenticated to see this."
)
PRIVATE_MESSAGE = "Hello from a private endpoint! You need to be authenticated to see this."


@router.get("/public")
async def public_message() -> dict:
    """Open to anonymous callers."""
    return {"message": PUBLIC_MESSAGE}


@router.get("/private")
async def private_message(principal: Annotated[Principal, Secured]) -> dict:
    """Requires a verified bearer token."""
    return {"message": PRIVATE_MESSAGE}
