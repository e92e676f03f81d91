import os
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# The app engine is never used by tests (get_db is overridden below), but the
# module builds one on import
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_formdesk_app.db")
from formdesk.main import app
from formdesk.core.config import Settings, get_settings
from formdesk.core.security import create_access_token
from formdesk.db.database import Base, enable_sqlite_foreign_keys, get_db
from formdesk.db.models import Form, Field, Response, ResponseField


@pytest.fixture(scope="session", autouse=True)
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test_formdesk.db",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_session(test_engine):
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("uploads")


@pytest.fixture
def test_settings(storage_dir):
    return Settings(
        STORAGE_DIR=str(storage_dir),
        TESTING=True,
        MAX_FILE_SIZE=1024 * 1024,
    )


@pytest.fixture(autouse=True)
def override_settings(test_settings):
    app.dependency_overrides[get_settings] = lambda: test_settings
    yield
    app.dependency_overrides.pop(get_settings, None)


@pytest.fixture(scope="session", autouse=True)
async def override_get_db_for_app(test_engine):
    """Point the app's get_db at the session-scoped test engine, one session per request."""
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
async def clean_tables(test_engine):
    """Ensure DB is empty before each test by deleting from all tables (keep schema intact)."""
    async with test_engine.begin() as conn:
        # delete in reverse order to respect FK constraints
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _auth_headers(user_id: str) -> dict:
    token = create_access_token({"sub": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return _auth_headers


@pytest.fixture
def owner_headers():
    return _auth_headers("user-owner")


@pytest.fixture
def other_headers():
    return _auth_headers("user-other")


@pytest.fixture
def make_form(test_session):
    """Insert a form with fields directly. Field specs are (label, type, extra kwargs)."""
    async def _make(title="Survey", owner="user-owner", published=True, fields=()):
        form = Form(title=title, description="", published=published, created_by=owner)
        test_session.add(form)
        await test_session.flush()
        for index, entry in enumerate(fields):
            label, field_type = entry[0], entry[1]
            extra = entry[2] if len(entry) > 2 else {}
            test_session.add(Field(
                form_id=form.id,
                label=label,
                type=field_type,
                order=index,
                options=extra.get("options", "[]"),
                required=extra.get("required", False),
                linked_form_id=extra.get("linked_form_id"),
            ))
        await test_session.commit()
        result = await test_session.execute(
            select(Form)
            .options(selectinload(Form.fields))
            .where(Form.id == form.id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
    return _make


@pytest.fixture
def make_response(test_session):
    """Insert a response with values keyed by field id."""
    async def _make(form, submitted_by="user-other", values=None):
        response = Response(form_id=form.id, submitted_by=submitted_by)
        test_session.add(response)
        await test_session.flush()
        for field_id, value in (values or {}).items():
            test_session.add(ResponseField(response_id=response.id, field_id=field_id, value=value))
        await test_session.commit()
        return response
    return _make
