import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from court_reservations.core.config import settings
from court_reservations.core.errors import BookingError, StoreUnavailable, booking_error_handler
from court_reservations.db.session import TRANSPORT_ERRORS
from court_reservations.api.v1.api import api_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

# CORS: use CORS_ORIGINS from env in production; default to localhost for dev
_default_origins = [
    "http://127.0.0.1:5173", "http://localhost:5173",
    "http://127.0.0.1:8080", "http://localhost:8080",
]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(BookingError, booking_error_handler)


async def _transport_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s: store transport failure: %s", request.method, request.url.path, exc)
    err = StoreUnavailable("The booking store could not be reached")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


for _exc in TRANSPORT_ERRORS:
    app.add_exception_handler(_exc, _transport_error_handler)

app.include_router(api_router)


@app.get("/health")
def health():
    return {"status": "ok"}
