"""pytest fixtures for rat racer backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- test_env: Autouse fixture with a known webhook secret and test environment
- db_url: Function-scoped database URL (temporary SQLite file by default,
  PostgreSQL testcontainer with migrations when RATRACER_TEST_POSTGRES=1)
- session_factory: Function-scoped async session factory with a fresh schema
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- app / client: FastAPI app wired to the test database and an httpx client
"""

import os
import subprocess
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel
from web3 import Web3

import ratracer.models  # noqa: F401  # registers tables on SQLModel.metadata
from ratracer.core.database import setup_db_session
from ratracer.core.timezone import utcnow
from ratracer.models.race import Race
from ratracer.models.rat import Rat
from ratracer.uow import create_uow_factory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
TEST_WEBHOOK_SECRET = "test-webhook-secret"
USE_POSTGRES = os.environ.get("RATRACER_TEST_POSTGRES") == "1"

TABLES = ["processed_events", "rat_locks", "races", "wallets", "rats"]


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Known configuration for every test; individual tests override as needed."""
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.setenv("WEBHOOK_MAX_AGE_SECONDS", "300")
    monkeypatch.setenv("ALLOWED_NETWORKS", "base-mainnet,base-sepolia")
    monkeypatch.setenv("BLOB_READ_WRITE_TOKEN", "")


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Only started when RATRACER_TEST_POSTGRES=1. Migrations run in a subprocess
    to avoid asyncio event loop conflicts with alembic's env.py.
    """
    if not USE_POSTGRES:
        yield None
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_ratracer",
    ) as container:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url
        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container


@pytest.fixture
def db_url(postgres_container, tmp_path) -> str:
    if postgres_container is not None:
        return postgres_container.get_connection_url(driver="psycopg")
    return f"sqlite+aiosqlite:///{tmp_path / 'ratracer.db'}"


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_url) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory over an empty schema.

    SQLite gets its schema from model metadata; PostgreSQL already has the
    migrated schema and is emptied after each test.
    """
    factory = setup_db_session(db_url, pool_size=10)
    engine = factory.kw["bind"]

    if not USE_POSTGRES:
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    if USE_POSTGRES:
        async with factory() as cleanup:
            for table in TABLES:
                await cleanup.execute(text(f"DELETE FROM {table}"))
            await cleanup.commit()

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session.

    Uncommitted changes are rolled back at the end of the test.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory.

    Each call opens a new session, so concurrent units of work behave like
    concurrent webhook deliveries.
    """
    return create_uow_factory(session_factory)


@pytest.fixture
def app(session_factory, uow_factory):
    """FastAPI app wired to the test database (lifespan is not run)."""
    from ratracer.app import create_app

    application = create_app()
    application.state.session_factory = session_factory
    application.state.uow_factory = uow_factory
    application.state.blob_client = None
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


# Webhook delivery helpers

OWNER_A = Web3.to_checksum_address("0x742d35cc6634c0532925a3b844bc9e7595f0beb0")
OWNER_B = Web3.to_checksum_address("0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed")
OWNER_C = Web3.to_checksum_address("0xfb6916095ca1df60bb79ce92ce3ea74c37c5d359")
ENTRY_TOKEN = Web3.to_checksum_address("0xdbf03b407c01e7cd3cbea99509d93f8dddc8c6fb")


def wallet(n: int) -> str:
    """Deterministic checksummed test address."""
    return Web3.to_checksum_address(f"0x{n:040x}")


@pytest.fixture
def make_envelope():
    """Build a Hook0 delivery envelope for an event."""
    counter = {"log_index": 0}

    def _make(
        event_name: str,
        parameters: dict,
        tx_hash: str | None = None,
        log_index: int | None = None,
        block_number: int | None = None,
        network: str | None = "base-sepolia",
        timestamp: str = "2026-10-18T12:00:00Z",
    ) -> dict:
        if log_index is None:
            counter["log_index"] += 1
            log_index = counter["log_index"]
        return {
            "event_name": event_name,
            "parameters": parameters,
            "network": network,
            "block_number": block_number or 21_000_000 + log_index,
            "transaction_hash": tx_hash or f"0x{log_index:064x}",
            "log_index": log_index,
            "timestamp": timestamp,
            "contract_address": "0x1111111111111111111111111111111111111111",
        }

    return _make


@pytest.fixture
def post_event(client):
    """POST a signed delivery to a webhook endpoint.

    ``body`` may be a dict (serialized to JSON) or raw bytes. Pass
    ``signature`` to send an explicit header value, or ``signed_body`` to sign
    different bytes than the ones sent.
    """
    import json

    from ratracer.services.webhooks.signature import sign_webhook_payload

    async def _post(
        path: str,
        body,
        secret: str = TEST_WEBHOOK_SECRET,
        signature: str | None = None,
        signed_body: bytes | None = None,
        include_signature: bool = True,
    ):
        raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
        headers = {"content-type": "application/json"}
        if include_signature:
            headers["x-hook0-signature"] = signature or sign_webhook_payload(
                signed_body if signed_body is not None else raw,
                secret,
                headers={"content-type": "application/json"},
            )
        return await client.post(path, content=raw, headers=headers)

    return _post


def make_rat(token_id: int, owner: str = OWNER_A) -> Rat:
    """Stored rat with fixed generated attributes."""
    return Rat(
        token_id=token_id,
        owner=owner,
        name=f"Street Rat #{token_id}",
        model_index=0,
        color="brown",
        image_url="https://rat-racer.vercel.app/images/brown.png",
        stats={"stamina": 70, "agility": 70, "speed": 70, "bloodline": "Alley Cat"},
        speeds=[1.0, 1.0, 1.0, 1.0, 1.0],
        gender="male",
        dob=utcnow(),
        archetype="Balanced",
        power_rating=72,
        rarity_score=37.0,
    )


def make_race(race_id: int, entry_fee: str = "100") -> Race:
    """Pending race created by OWNER_A."""
    return Race(
        race_id=race_id,
        creator=OWNER_A,
        track_id=1,
        entry_token=ENTRY_TOKEN,
        entry_fee=entry_fee,
    )
