"""pytest fixtures for Afroverse backend tests.

Provides:
- session_factory: Function-scoped SQLite (aiosqlite) database file with all tables
- uow_factory: UnitOfWork factory over the same database
- clock: Controllable clock injected into executor and scanner
- provider: Fake generation provider (gated, scripted failures)
- blob_store: LocalBlobStore rooted in tmp_path
- owner, make_job: Seed helpers
- postgres_url: Session-scoped testcontainer PostgreSQL with migrations applied
  (skipped when Docker is unavailable)
"""

import os

# Settings are read at import time by afroverse.app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RECOVERY_INTERVAL_SECONDS", "0")

import asyncio  # noqa: E402
import subprocess  # noqa: E402
import sys  # noqa: E402
from datetime import datetime, timedelta  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Sequence  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import afroverse.models  # noqa: E402, F401
from afroverse.core.database import setup_db_session  # noqa: E402
from afroverse.models.generation import GenerationJob, GenerationVersion, JobKind  # noqa: E402
from afroverse.models.owner import Owner  # noqa: E402
from afroverse.repositories.generation_job import GenerationJobRepository  # noqa: E402
from afroverse.services.generation.executor import GenerationExecutor  # noqa: E402
from afroverse.services.generation.provider import ProviderOutput  # noqa: E402
from afroverse.services.storage.blob_store import LocalBlobStore  # noqa: E402
from afroverse.uow import create_uow_factory  # noqa: E402

BACKEND_ROOT = Path(__file__).resolve().parent.parent
LEASE = timedelta(minutes=15)
T0 = datetime(2026, 3, 14, 9, 0, 0)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeProvider:
    """Generation provider double.

    - ``errors``: exceptions raised by successive calls, in order
    - ``gate``: when set to an Event, calls block until it is set
    - ``entered``: set as soon as a call starts
    """

    name = "fake"

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.errors: list[Exception] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.image = b"\x89PNG\r\n\x1a\ngenerated"
        self.content_type = "image/png"

    def model_for(self, quality_tier: str) -> str:
        return f"fake-{quality_tier}"

    async def generate(
        self,
        prompt: str,
        references: Sequence[bytes],
        quality_tier: str = "standard",
        aspect_ratio: str = "1:1",
    ) -> ProviderOutput:
        self.calls.append(
            {
                "prompt": prompt,
                "references": list(references),
                "quality_tier": quality_tier,
                "aspect_ratio": aspect_ratio,
            }
        )
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        return ProviderOutput(
            image=self.image,
            request_id=f"pred_{len(self.calls)}",
            content_type=self.content_type,
        )


class RecordingTrigger:
    """JobTrigger that records fired jobs; raises for ids in ``fail_for``."""

    def __init__(self) -> None:
        self.fired: list[tuple[UUID, str]] = []
        self.kinds: dict[UUID, JobKind] = {}
        self.fail_for: set[UUID] = set()

    def fire(self, job_id, version_id, kind=JobKind.INITIAL) -> None:
        if job_id in self.fail_for:
            raise RuntimeError(f"cannot spawn execution for {job_id}")
        self.fired.append((job_id, version_id))
        self.kinds[job_id] = kind

    async def drain(self) -> None:
        return None


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Provide a session factory over a fresh SQLite database file."""
    factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path / 'afroverse.db'}")
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return create_uow_factory(session_factory)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def executor(session_factory, provider, blob_store, clock):
    return GenerationExecutor(
        session_factory=session_factory,
        provider=provider,
        blob_store=blob_store,
        lease=LEASE,
        clock=clock,
    )


@pytest_asyncio.fixture
async def owner(session_factory, clock):
    """Owner in good standing."""
    owner = Owner(handle="adaeze", display_name="Adaeze", created_at=clock())
    async with session_factory() as session:
        session.add(owner)
        await session.commit()
    return owner


@pytest_asyncio.fixture
async def source_ref(blob_store):
    """Ref of an uploaded source image."""
    return await blob_store.store(b"source-selfie", "uploads/adaeze/selfie.png")


@pytest.fixture
def make_job(session_factory, owner, clock, source_ref):
    """Factory seeding a queued job; keyword arguments override column values."""

    async def _make(**fields) -> UUID:
        values = {
            "owner_id": owner.id,
            "input_refs": [source_ref],
            "style_parameters": {"prompt": "Portrait wearing kente, golden hour"},
            "provider_name": "fake",
            "provider_model": "fake-standard",
            "created_at": clock(),
            "updated_at": clock(),
        }
        values.update(fields)
        job = GenerationJob(**values)
        async with session_factory() as session:
            session.add(job)
            await session.commit()
        return job.id

    return _make


async def add_version(session_factory, job_id: UUID, version_id: str, position: int) -> None:
    """Insert a version row directly (simulates history produced earlier)."""
    async with session_factory() as session:
        session.add(
            GenerationVersion(
                job_id=job_id,
                version_id=version_id,
                position=position,
                artifact_refs={"image": f"local://generations/{job_id}/{version_id}.png"},
                created_at=T0,
            )
        )
        await session.commit()


async def load_job(session_factory, job_id: UUID) -> GenerationJob:
    async with session_factory() as session:
        job = await GenerationJobRepository(session).get_by_id(job_id)
    assert job is not None
    return job


@pytest.fixture(scope="session")
def postgres_url():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    try:
        from testcontainers.postgres import PostgresContainer

        container = PostgresContainer(
            image="postgres:17",
            username="test",
            password="test",
            dbname="test_afroverse",
        )
        container.start()
    except Exception as e:
        pytest.skip(f"PostgreSQL container unavailable: {e}")

    try:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url
        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=BACKEND_ROOT,
        )

        yield db_url
    finally:
        container.stop()
