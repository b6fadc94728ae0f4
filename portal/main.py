from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import portal.models  # noqa: F401  (register tables with Base.metadata)
from portal.core.config import FANOUT_RELAY
from portal.core.logger_factory import setup_logger
from portal.core.redis_config import get_redis_client
from portal.database.db import Base, engine
from portal.domain.errors import ErrorCode, RegistrationError
from portal.routes import live, registrations, reports
from portal.routes.deps import get_notifier
from portal.services.fanout import RedisRelayListener

logger = setup_logger(__name__)

HTTP_STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.EVENT_NOT_FOUND: 404,
    ErrorCode.REGISTRATION_NOT_FOUND: 404,
    ErrorCode.EVENT_NOT_OPEN: 400,
    ErrorCode.DEADLINE_PASSED: 400,
    ErrorCode.MISSING_PAYMENT_PROOF: 400,
    ErrorCode.ALREADY_REGISTERED: 409,
    ErrorCode.EVENT_FULL: 409,
    ErrorCode.TRANSITION_NOT_ALLOWED: 409,
    ErrorCode.CANCELLATION_NOT_ALLOWED: 409,
    ErrorCode.EDIT_NOT_ALLOWED: 409,
    ErrorCode.CONCURRENT_MODIFICATION: 409,
    ErrorCode.NOT_AUTHORIZED: 403,
    ErrorCode.ALLOCATION_UNAVAILABLE: 503,
    ErrorCode.LEDGER_UNAVAILABLE: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create all tables (in production, use migrations such as Alembic)
    Base.metadata.create_all(bind=engine)
    notifier = get_notifier()
    notifier.start()
    listener = None
    if FANOUT_RELAY:
        # Events relayed by other instances reach this instance's subscribers too
        listener = RedisRelayListener(get_redis_client(), notifier.hub)
        listener.start()
    yield
    if listener is not None:
        listener.stop()
    notifier.stop()


app = FastAPI(lifespan=lifespan)

# Configure CORS
origins = [
    "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RegistrationError)
async def registration_error_handler(request: Request, exc: RegistrationError):
    headers = {"Retry-After": "1"} if exc.transient else None
    return JSONResponse(
        status_code=HTTP_STATUS_BY_CODE.get(exc.code, 400),
        content={"detail": exc.message, "code": exc.code.value},
        headers=headers,
    )


# Include the routers
app.include_router(registrations.router)
app.include_router(reports.router)
app.include_router(live.router)
