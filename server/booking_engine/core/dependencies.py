"""FastAPI dependencies for notifications and administrative actors."""

from typing import Optional

from fastapi import Depends, Header

from ..services.notifier import Notifier, get_default_notifier
from .exceptions import ValidationError

DEFAULT_ACTOR = "system"


def get_notifier() -> Notifier:
    """
    Notifier used for booking events.

    Overridden in tests to capture events instead of delivering them.
    """
    return get_default_notifier()


async def get_actor(
    x_actor: Optional[str] = Header(None, alias="X-Actor")
) -> str:
    """
    Identify who is making an administrative change.

    Raises:
        ValidationError: If the header is present but blank or too long
    """
    if x_actor is None:
        return DEFAULT_ACTOR

    actor = x_actor.strip()
    if not actor or len(actor) > 255:
        raise ValidationError(
            detail="X-Actor header must be between 1 and 255 characters",
            errors={"X-Actor": "invalid actor"},
        )
    return actor


EventNotifier = Depends(get_notifier)
Actor = Depends(get_actor)
