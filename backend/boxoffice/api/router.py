"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from boxoffice.api.routes import admin, events, inventory, orders, payments, tickets

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(events.router)
api_router.include_router(inventory.router)
api_router.include_router(orders.router)
api_router.include_router(payments.router)
api_router.include_router(tickets.router)
api_router.include_router(admin.router)
