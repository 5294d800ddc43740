from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from attendry.api.routes import events
from attendry.config import settings
from attendry.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Attendry API starting")
    yield
    logger.info("Attendry API shutting down")


app = FastAPI(
    title="Attendry",
    description="Event discovery: search, rank and extract conferences with speakers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(events.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "attendry"}
