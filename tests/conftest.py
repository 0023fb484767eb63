"""Shared pytest fixtures for the user profiles tests.

Each test gets its own SQLite database file (aiosqlite driver) so that the
service's independent sessions, including the concurrent count + page
fetch, behave as they do against PostgreSQL.
"""
import httpx
import pytest
import pytest_asyncio

from app.config import Settings
from app.database import Base, create_engine, create_session_factory
from app.main import create_app
from app.services.user_service import UserService


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'profiles.db'}",
        ENVIRONMENT="test",
        LOG_LEVEL="WARNING",
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def user_service(session_factory):
    return UserService(session_factory)


@pytest.fixture
def app(settings, session_factory):
    return create_app(settings, session_factory=session_factory)


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def ada_payload():
    return {"fullName": "Ada Lovelace", "email": "ada@example.com"}


@pytest.fixture
def full_payload():
    """A create body with every optional field filled in."""
    return {
        "fullName": "Grace Hopper",
        "email": "grace@example.com",
        "phoneNumber": "+14155552671",
        "bio": "Invented the first compiler.",
        "avatarUrl": "https://example.com/avatars/grace.png",
        "dateOfBirth": "1906-12-09",
        "location": "New York",
    }


@pytest.fixture
def people():
    """Profiles used by the listing/search tests."""
    return [
        {"fullName": "Alice Smith", "email": "alice@example.com", "bio": "Likes hiking", "location": "London"},
        {"fullName": "Bob Jones", "email": "bob@example.com", "bio": "Friends with ALICE", "location": "Paris"},
        {"fullName": "Carol White", "email": "carol.alicea@example.com", "location": "London"},
        {"fullName": "Dave Brown", "email": "dave@example.com", "bio": "Chess player", "location": "New London"},
        {"fullName": "Eve Black", "email": "eve@example.com", "location": "Berlin"},
    ]
