# storefront/main.py
import logging
import sys
from fastapi import FastAPI
from contextlib import asynccontextmanager

from storefront.config import settings
from storefront.database import create_tables
from storefront.presentation.api import router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    try:
        await create_tables()
        logger.info("Таблицы созданы")
    except Exception as e:
        logger.info(f"Таблицы не созданы: {e}")

    yield

    logger.info("Приложение останавливается...")


app = FastAPI(
    title="Storefront",
    description="Корзина и оформление заказа",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Storefront работает"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
