"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.suppliers import router as suppliers_router
from routes.imports import router as imports_router

__all__ = [
    "suppliers_router",
    "imports_router",
]
