from fastapi import APIRouter
from court_reservations.api.v1.routes.public import router as public_router
from court_reservations.api.v1.routes.bookings import router as bookings_router
from court_reservations.api.v1.routes.staff import router as staff_router
from court_reservations.api.v1.routes.courts import router as courts_router
from court_reservations.api.v1.routes.admin import router as admin_router
from court_reservations.api.v1.routes.notifications import router as notifications_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(public_router)
api_router.include_router(bookings_router)
api_router.include_router(staff_router)
api_router.include_router(courts_router)
api_router.include_router(admin_router)
api_router.include_router(notifications_router)
