import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slotbook.config import CORS_ORIGINS, ENABLE_EXPIRY_WORKER
from slotbook.database import Base, SessionLocal, engine
from fastapi.middleware.cors import CORSMiddleware
from slotbook.middleware import add_request_id_and_process_time
from slotbook.models import (  # noqa: F401 - register every table on Base.metadata
    booking_model,
    cancellation_policy_model,
    conversation_model,
    reschedule_model,
    review_model,
    service_model,
    user_model,
)
from slotbook.routes.user_route import user_router
from slotbook.routes.service_route import service_router
from slotbook.routes.booking_route import booking_router
from slotbook.routes.reschedule_route import reschedule_router
from slotbook.routes.review_route import review_router
from slotbook.routes.conversation_route import conversation_router
from slotbook.services.cancellation_crud import cancellation_crud
from slotbook.workers.expiry_worker import expiry_loop
from slotbook.logger import get_logger

logger = get_logger(__name__)


def init_db():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        cancellation_crud.seed_default_policies(db)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    stop_event = asyncio.Event()
    expiry_task = None
    if ENABLE_EXPIRY_WORKER:
        expiry_task = asyncio.create_task(expiry_loop(stop_event))
        logger.info("Scheduled sweep worker started")

    yield

    stop_event.set()
    if expiry_task:
        await expiry_task
        logger.info("Scheduled sweep worker stopped")


app = FastAPI(
    title="SlotBook API",
    version="1.0.0",
    description="API for a two-sided services marketplace: hosts offer time slots, visitors book them, "
                "and both sides manage the booking lifecycle and chat about it.",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(add_request_id_and_process_time)


@app.get("/", status_code=200)
async def home():
    return {"message": "Welcome to SlotBook REST API Project"}


@app.get("/health", status_code=200)
async def health():
    return {"status": "ok", "service": "slotbook", "expiry_worker": ENABLE_EXPIRY_WORKER}


app.include_router(user_router, prefix="/api", tags=["Users"])
app.include_router(service_router, prefix="/api", tags=["Services"])
app.include_router(booking_router, prefix="/api", tags=["Bookings"])
app.include_router(reschedule_router, prefix="/api", tags=["Reschedules"])
app.include_router(review_router, prefix="/api", tags=["Reviews"])
app.include_router(conversation_router, prefix="/api", tags=["Conversations"])
