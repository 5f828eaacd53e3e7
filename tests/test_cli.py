"""Operator CLI tests against a throwaway SQLite database."""

import pytest

from lumen.cli.__main__ import async_main
from lumen.core.database import setup_db_session
from lumen.uow import create_uow_factory


@pytest.fixture
def cli_db(tmp_path, monkeypatch) -> str:
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("KIE_AI_API_KEY", "kie-test")
    monkeypatch.setenv("PASSWORD_HASH_ROUNDS", "4")
    for name in ("OPENAI_API_KEY", "GEMINI_API_KEY", "REPLICATE_API_TOKEN"):
        monkeypatch.setenv(name, "")
    return db_url


@pytest.mark.asyncio
async def test_bootstrap_flow(cli_db, capsys):
    assert await async_main(["init-db"]) == 0
    assert await async_main(["seed-providers"]) == 0
    assert await async_main(["seed-providers"]) == 0  # rerun refreshes in place
    assert await async_main(["create-org", "Acme Studio", "acme", "--credits", "500"]) == 0
    assert await async_main(["create-org", "Acme Again", "acme"]) == 1
    assert await async_main(["grant-credits", "acme", "250"]) == 0
    assert await async_main(["grant-credits", "missing", "10"]) == 1
    add_admin = ["add-member", "acme", "Ops@Acme.test", "--role", "admin"]
    add_admin += ["--password", "pass-word-1"]
    assert await async_main(add_admin) == 0
    assert await async_main(add_admin) == 1  # already a member
    assert await async_main(["add-member", "acme", "new@acme.test"]) == 1  # no password
    assert await async_main(["add-member", "missing", "ops@acme.test"]) == 1

    assert "acme: balance=750" in capsys.readouterr().out

    session_factory = setup_db_session(cli_db)
    uow_factory = create_uow_factory(session_factory)
    try:
        async with await uow_factory() as uow:
            providers = await uow.providers.list_active()
            org = await uow.organizations.get_by_slug("acme")
            ledger_total = await uow.credit_ledger.sum_by_organization(org.id)
            admin = await uow.users.get_by_email("ops@acme.test")
            membership = await uow.profiles.get_membership(admin.id, org.id)
    finally:
        await session_factory.kw["bind"].dispose()

    assert {p.slug for p in providers} == {
        "kieai-gemini3",
        "kieai-seedream",
        "kieai-gemini25",
        "kieai-nano",
    }
    assert [p.priority for p in providers] == [0, 0, 1, 1]
    assert org.credits == 750
    assert ledger_total == 750
    assert membership.role.value == "admin"
