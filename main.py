from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.structured_logging import RequestCorrelationMiddleware, configure_structured_logging
from database import get_database_status, init_database
from env_config import Config
from routers import fortune_router, payment_router, points_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_structured_logging()
    Config.log_status()
    Config.validate_required()
    init_database(Config.DATABASE_URL)
    yield


app = FastAPI(title="Saju Fortune API", version=Config.API_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestCorrelationMiddleware)

app.include_router(fortune_router)
app.include_router(payment_router)
app.include_router(points_router)


@app.get("/")
def root():
    return {
        "status": "online",
        "message": "Saju Fortune API",
        "version": Config.API_VERSION,
    }


@app.get("/health")
def health():
    db = get_database_status()
    return {
        "status": "healthy" if db["enabled"] else "degraded",
        "database": db,
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
