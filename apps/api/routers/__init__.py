"""Routers package."""

from . import (
    health,
    credits,
    admin,
    generations,
    webhooks,
)
