# marketplace/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from marketplace.api import create_app
from marketplace.data import models  # noqa: F401  registers every table on Base.metadata
from marketplace.data.database import Base, engine
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Creating tables: {sorted(Base.metadata.tables.keys())}")
    Base.metadata.create_all(bind=engine)
    yield


app = create_app(lifespan=lifespan)

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
