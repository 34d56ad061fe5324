"""
Tests for the admin command line tool.
"""

import pytest

from scripts.admin import build_parser, run


async def invoke(*argv: str) -> dict:
    return await run(build_parser().parse_args(list(argv)))


class TestAdminCli:
    """Run commands against the in-memory database from ``db_session``."""

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_role_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["add-member", "--org-id", "o", "--user-id", "u", "--role", "GOD"])

    @pytest.mark.asyncio
    async def test_key_lifecycle(self, db_session):
        issued = await invoke("issue-key", "--user-id", "user_42", "--label", "ops")
        assert issued["key"].startswith("sk_analytics_")

        listed = await invoke("list-keys", "--user-id", "user_42")
        assert listed["count"] == 1
        assert "key" not in listed["keys"][0]
        assert listed["keys"][0]["label"] == "ops"

        await invoke("revoke-key", "--user-id", "user_42", "--key-id", issued["id"])
        listed = await invoke("list-keys", "--user-id", "user_42")
        assert listed["keys"][0]["revoked"] is True

        cleaned = await invoke("cleanup-keys", "--user-id", "user_42")
        assert cleaned["deleted"] == 1

    @pytest.mark.asyncio
    async def test_org_and_membership(self, db_session):
        org = await invoke("create-org", "--name", "Acme")
        member = await invoke(
            "add-member", "--org-id", org["org_id"], "--user-id", "user_1", "--role", "ADMIN"
        )
        assert member["role"] == "ADMIN"

        member = await invoke("add-member", "--org-id", org["org_id"], "--user-id", "user_1")
        assert member["role"] == "MEMBER"

    @pytest.mark.asyncio
    async def test_add_member_unknown_org(self, db_session):
        with pytest.raises(SystemExit):
            await invoke("add-member", "--org-id", "missing", "--user-id", "user_1")

    @pytest.mark.asyncio
    async def test_issue_with_expiry(self, db_session):
        issued = await invoke(
            "issue-key", "--user-id", "user_42", "--expires-at", "2030-01-01T00:00:00Z"
        )
        assert issued["expires_at"] == "2030-01-01T00:00:00"
