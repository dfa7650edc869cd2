"""
Threshold Compass API server.
Run: uvicorn threshold_compass.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from threshold_compass.api.routes import router
from threshold_compass.config import LOG_LEVEL
from threshold_compass.core.database import init_db

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Threshold Compass API",
    description="Carryover, threshold range and drift tracking for microdosing",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("threshold_compass.main:app", host="0.0.0.0", port=8000)
