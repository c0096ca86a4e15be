from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.exceptions import StorageError
from storefront.infrastructure.repositories import (
    SQLAlchemyProductRepository,
    SQLAlchemyCartRepository,
    SQLAlchemyOrderRepository
)


class UnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self):
        async with self._session_factory() as session:
            try:
                uow_impl = _UnitOfWorkImpl(session)
                yield uow_impl
                # Если commit не вызван — rollback
                await session.rollback()
            except SQLAlchemyError as e:
                await session.rollback()
                # Детали хранилища наружу не отдаем, только в цепочке исключений
                raise StorageError(f"Ошибка хранилища: {type(e).__name__}") from e
            except Exception:
                await session.rollback()
                raise


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.products = SQLAlchemyProductRepository(session)
        self.cart = SQLAlchemyCartRepository(session)
        self.orders = SQLAlchemyOrderRepository(session)

    async def commit(self):
        await self._session.commit()

    async def rollback(self):
        await self._session.rollback()
