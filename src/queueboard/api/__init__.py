"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Kiosk, admin and display endpoints live side by side under /api/v1.
There is no auth layer; the queue runs on a trusted clinic network.
"""

from fastapi import APIRouter

from queueboard.api.categories import router as categories_router
from queueboard.api.display import router as display_router
from queueboard.api.health import router as health_router
from queueboard.api.queue import router as queue_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(categories_router, tags=["categories"])
api_router.include_router(queue_router, tags=["queue"])
api_router.include_router(display_router, tags=["display"])
