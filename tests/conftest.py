"""
Global fixtures for integration tests.

IMPORTANT: these tests run against a real MongoDB (a dedicated test database).
Users and teams are created per test and removed again afterwards.
"""
import os
import pytest
from typing import AsyncGenerator, Callable, Dict, List
from httpx import AsyncClient, ASGITransport
from motor.motor_asyncio import AsyncIOMotorClient

# Environment must be set BEFORE the app is imported
# In Docker, MongoDB lives at 'mongodb', not 'localhost'
MONGO_URL = os.getenv("TEST_MONGO_URL", os.getenv("MONGO_URL", "mongodb://mongodb:27017"))
DB_NAME = os.getenv("TEST_DB_NAME", "whs_case_test_db")

os.environ["MONGO_URL"] = MONGO_URL
os.environ["DB_NAME"] = DB_NAME
os.environ["SECRET_KEY"] = os.getenv("SECRET_KEY", "test_secret_key_for_testing_only")

from api.main import app

TEST_PASSWORD = "TestPass123!"


@pytest.fixture(scope="function")
async def test_db():
    """
    Direct access to the test database.
    A new Motor client per test avoids event loop mismatches.
    """
    client = AsyncIOMotorClient(MONGO_URL)
    db = client[DB_NAME]
    yield db
    client.close()


@pytest.fixture(scope="function")
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for the API.
    Uses ASGITransport so no server has to be started.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture(scope="function")
async def create_user(async_client: AsyncClient, test_db) -> AsyncGenerator[Callable, None]:
    """
    Factory that stores a user with the given role and logs them in.

    Returns ``(user_id, headers)``. Every user created here is deleted when
    the test ends.
    """
    from api.auth.auth_handler import get_password_hash
    from datetime import datetime, timezone

    created_emails: List[str] = []

    async def _create(role: str, email: str, team_id: str = None, **extra) -> tuple:
        user = {
            "username": email.split("@")[0],
            "email": email,
            "hashed_password": get_password_hash(TEST_PASSWORD),
            "role": role,
            "is_active": True,
            "team_id": team_id,
            "created_at": datetime.now(timezone.utc),
            **extra,
        }
        await test_db.Users.delete_one({"email": email})
        result = await test_db.Users.insert_one(user)
        created_emails.append(email)

        response = await async_client.post(
            "/api/token",
            data={"username": email, "password": TEST_PASSWORD},
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )
        assert response.status_code == 200, f"Failed to get token for {email}: {response.text}"
        return str(result.inserted_id), auth_headers(response.json()["access_token"])

    yield _create

    await test_db.Users.delete_many({"email": {"$in": created_emails}})


def auth_headers(token: str) -> Dict[str, str]:
    """Authorization headers for a bearer token."""
    return {"Authorization": f"Bearer {token}"}
