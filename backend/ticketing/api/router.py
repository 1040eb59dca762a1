"""
Central API routers.

`api_router` carries the client and operator API under /api/v1.
`provider_router` carries the payment provider's callback, kept apart so it
never shares a prefix with operator endpoints.
"""

from fastapi import APIRouter
from ticketing.api.routes import admin, bookings, mpesa, payments, tickets

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(payments.router)
api_router.include_router(bookings.router)
api_router.include_router(tickets.router)
api_router.include_router(admin.router)

provider_router = APIRouter()
provider_router.include_router(mpesa.router)
