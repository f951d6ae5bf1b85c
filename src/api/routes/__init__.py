"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from src.api.routes import blobs, field_intake, shipments, webhooks

__all__ = [
    "blobs",
    "field_intake",
    "shipments",
    "webhooks",
]
