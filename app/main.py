from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from loguru import logger

from app.api.v1 import index
from app.api.v1 import auth
from app.api.v1 import user
from app.api.v1 import qr
from app.api.v1 import dispute
from app.api.v1 import carrier
from app.api.v1 import shipment
from app.api.v1 import bid
from app.api.v1 import warehouse

from app.core.config import settings
from app.core.errors import register_error_handlers
from app.core.logging import setup_logging
from app.db.core import init_db

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(f"{settings.app_name} started")
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

register_error_handlers(app)

# Middlewares
origins = []

if settings.allowed_hosts:
    origins = settings.allowed_hosts.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routes
app.include_router(index.router, prefix="/api", tags=["Health"])
app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(user.router, prefix="/api/users", tags=["Users"])
app.include_router(qr.router, prefix="/api/qr", tags=["Checkpoint Scans"])
app.include_router(dispute.router, prefix="/api/disputes", tags=["Disputes"])
app.include_router(carrier.router, prefix="/api/carriers", tags=["Carriers"])
app.include_router(shipment.router, prefix="/api/shipments", tags=["Shipments"])
app.include_router(bid.router, prefix="/api/bids", tags=["Bids"])
app.include_router(warehouse.router, prefix="/api/warehouses", tags=["Warehouses"])

# Static files serving
app.mount("/static", StaticFiles(directory=settings.static_dir), name="static")

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=None,
    )
