"""
ROUTERS - FastAPI Router Modules

Usage:
    from routers import fortune_router, payment_router, points_router

    app.include_router(fortune_router)
    app.include_router(payment_router)
    app.include_router(points_router)
"""

from .fortune import router as fortune_router
from .payment import router as payment_router
from .points import router as points_router

__all__ = [
    'fortune_router',
    'payment_router',
    'points_router',
]
