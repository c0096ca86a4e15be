import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from storefront.infrastructure.db_schema import metadata
from tests.fakes import FakeUnitOfWork, InMemoryStorage

ADDRESS = {
    "email": "buyer@example.com",
    "firstName": "Анна",
    "lastName": "Иванова",
    "address": "ул. Ленина, 1",
    "city": "Москва",
    "state": "Москва",
    "zipCode": "101000",
    "country": "RU",
}


@pytest.fixture
def address():
    return dict(ADDRESS)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def uow(storage):
    return FakeUnitOfWork(storage)


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()
