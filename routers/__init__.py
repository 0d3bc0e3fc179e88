"""Routers package."""

from . import (
    health,
    auth,
    ideas,
    documents,
    billing,
    export,
)
