import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the environment before anything initializes the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-for-testing-only-do-not-use")
# Nothing listens on port 1, so the runtime falls back to in-memory limits
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:1/0")
# Upstream credentials stay unset unless a test configures them
for _key in (
    "OPENAI_API_KEY",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_PRICE_INSIDERS",
    "STRIPE_PRICE_PRO",
    "STRIPE_PRICE_ENTERPRISE",
    "BEEHIIV_API_KEY",
    "BEEHIIV_PUBLICATION_ID",
    "SCENE_COMPONENTS_PATH",
    "SMTP_HOST",
):
    os.environ.pop(_key, None)

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from wessley.service.runtime import get_runtime, reset_runtime_for_tests  # noqa: E402
from wessley.service.scene_components import reset_scene_components_cache  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    reset_scene_components_cache()
    yield
    reset_runtime_for_tests()
    reset_scene_components_cache()


def auth_headers_for(user_id: str, email: str | None = None) -> dict:
    token = get_runtime().auth.issue_access_token(user_id, email=email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Factory for Bearer headers of an arbitrary user id."""
    return auth_headers_for


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from wessley import app as app_module

    return TestClient(app_module.app)


@pytest.fixture
def free_user():
    """A signed-in user on the free tier."""
    get_runtime().store.upsert_profile("user-free", email="free@example.com")
    return auth_headers_for("user-free", "free@example.com")


@pytest.fixture
def subscriber():
    """A signed-in user with an active Pro subscription."""
    get_runtime().store.upsert_profile(
        "user-pro",
        email="pro@example.com",
        display_name="Pat Pro",
        subscription_tier="pro",
        subscription_status="active",
    )
    return auth_headers_for("user-pro", "pro@example.com")


@pytest.fixture
def admin_user():
    get_runtime().store.upsert_profile(
        "user-admin",
        email="admin@example.com",
        subscription_tier="admin",
        subscription_status="active",
    )
    return auth_headers_for("user-admin", "admin@example.com")


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
