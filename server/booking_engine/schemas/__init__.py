"""Pydantic schemas for request/response validation."""

from .booking import *  # noqa: F403
from .common import *  # noqa: F403
from .health import *  # noqa: F403
from .offer import *  # noqa: F403
from .pool import *  # noqa: F403
from .waitlist import *  # noqa: F403
