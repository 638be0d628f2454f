"""
Pytest configuration and fixtures
"""

import os
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from models.base import Base
from ingestion.runner import ClinicImporter
from schemas.clinic import Coordinates
from schemas.imports import ImportOptions
from typing import AsyncGenerator

# Test database URL (in-memory SQLite unless overridden)
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


class FakeGeocoder:
    """Records calls; returns fixed coordinates unless the address is in misses"""

    def __init__(self, lat: float = 30.2672, lng: float = -97.7431, misses=()):
        self.lat = lat
        self.lng = lng
        self.misses = set(misses)
        self.calls = []

    async def geocode_address(self, address, city, state, zip_code=""):
        self.calls.append((address, city, state, zip_code))
        if address in self.misses:
            return None
        return Coordinates(lat=self.lat, lng=self.lng)


class FakeVerifier:
    """Every website is up unless listed in down"""

    def __init__(self, down=()):
        self.down = set(down)
        self.calls = []

    async def verify(self, url):
        self.calls.append(url)
        return url not in self.down


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            poolclass=StaticPool,  # one shared in-memory database
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def import_options(tmp_path):
    """Default options with failure logs kept out of the working directory"""
    return ImportOptions(failure_log_dir=str(tmp_path / "import_logs"))


@pytest.fixture
def make_importer(db_session, geocoder, verifier, import_options):
    """Factory for importers wired to the test session and fake collaborators"""

    def _make(session=None, **option_overrides):
        options = import_options.model_copy(update=option_overrides)
        return ClinicImporter(
            session or db_session,
            geocoder=geocoder,
            verifier=verifier,
            options=options,
        )

    return _make


@pytest.fixture
def clinic_record():
    """One complete raw record, as read from a CSV row"""
    return {
        "name": "Premium Men's Health Clinic",
        "address": "123 Main St",
        "city": "Austin",
        "state": "TX",
        "zip": "78701",
        "phone": "512.555.1234",
        "website": "premium-mens-health.com",
        "services": "TRT; ED Treatment, Weight Management",
    }


@pytest.fixture
def sample_csv():
    """Three rows: complete, missing state, no website"""
    return (
        "Name,Address,City,State,Zip,Phone,Website,Services\n"
        "Premium Men's Health Clinic,123 Main St,Austin,TX,78701,(512) 555-1234,https://premium-mens-health.com,TRT;ED Treatment\n"
        "Elite Male Medical,456 Broadway Ave,New York,,10013,212-555-6789,elitemalemedical.com,TRT\n"
        "Total Men's Health,789 Wilshire Blvd,Los Angeles,CA,90017,323-555-4321,,TRT;Hair Loss\n"
    ).encode("utf-8")
