import os, tempfile, uuid

# must run before bagami is imported: the engine is built from settings at import time
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tempfile.mkdtemp(prefix='bagami-tests-')}/ledger.db"
os.environ["NOTIFICATION_BACKEND"] = "log"

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient

from bagami.db import Base, engine, SessionLocal
from bagami.main import app
from bagami.models.user import User
from bagami.models.wallet import Wallet
from bagami.models.transaction import Transaction  # noqa: F401  registers tables for create_all
from bagami.models.platform_setting import PlatformSetting
from bagami.models.admin_action import AdminAction  # noqa: F401
from bagami.models.notification import Notification  # noqa: F401
from bagami.schemas.metadata import CATEGORY_BONUS
from bagami.security import make_access_token
from bagami.services import ledger
from bagami.services.notifications import current_notifier


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, kind, context):
        self.sent.append((user_id, kind, context))

    def kinds(self, user_id=None):
        return [k for (u, k, _c) in self.sent if user_id is None or u == user_id]


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {make_access_token(str(user.id), user.role)}"}


@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # pooled aiosqlite connections belong to this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def session(db):
    async with SessionLocal() as s:
        yield s


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def make_user(db):
    async def _make(role: str = "user", is_active: bool = True, balance: int = 0, name: str = "Test User") -> User:
        async with SessionLocal() as s:
            user = User(email=f"user-{uuid.uuid4().hex[:10]}@bagami.test", name=name, role=role, is_active=is_active)
            s.add(user)
            await s.commit()
            if balance:
                await ledger.credit(
                    s, user_id=user.id, amount=balance, description="Opening balance",
                    category=CATEGORY_BONUS, notifier=RecordingNotifier(),
                )
        return user
    return _make


@pytest_asyncio.fixture
async def set_commission_rate(db):
    async def _set(value: str):
        async with SessionLocal() as s:
            row = await s.get(PlatformSetting, "commission_rate")
            if row is None:
                s.add(PlatformSetting(key="commission_rate", value=value))
            else:
                row.value = value
            await s.commit()
    return _set


@pytest_asyncio.fixture
async def client(db, notifier):
    app.dependency_overrides[current_notifier] = lambda: notifier
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def balance_of(user_id) -> int:
    async with SessionLocal() as s:
        return int((await s.get(Wallet, user_id)).balance)
