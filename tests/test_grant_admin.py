"""Tests for the admin grant script."""

import importlib.util
from pathlib import Path

import pytest

from wessley.service.runtime import get_runtime

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "grant_admin.py"


@pytest.fixture(scope="module")
def grant_admin():
    spec = importlib.util.spec_from_file_location("grant_admin", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module.grant_admin


class TestGrantAdmin:
    def test_creates_profile(self, grant_admin):
        assert grant_admin("new-admin", "ops@wessley.ai")["status"] == "created"
        profile = get_runtime().store.get_profile("new-admin")
        assert profile.is_admin
        assert profile.email == "ops@wessley.ai"

    def test_promotes_then_is_idempotent(self, grant_admin):
        get_runtime().store.upsert_profile("user-1", email="u@example.com")
        assert grant_admin("user-1")["status"] == "promoted"
        assert grant_admin("user-1")["status"] == "already_admin"
        assert get_runtime().store.get_profile("user-1").subscription_status == "active"

    def test_dry_run_changes_nothing(self, grant_admin):
        assert grant_admin("ghost", dry_run=True)["status"] == "dry_run"
        assert get_runtime().store.get_profile("ghost") is None

    def test_promoted_user_reaches_admin_routes(self, grant_admin, client, auth_headers):
        grant_admin("ops")
        response = client.get("/api/admin/scraper/status", headers=auth_headers("ops"))
        assert response.status_code == 200
