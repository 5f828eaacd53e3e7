"""Operator commands for the lumen backend.

Usage:
    python -m lumen.cli <command> [OPTIONS]

Examples:
    # Create tables (local development and tests; production uses managed migrations)
    python -m lumen.cli init-db

    # Insert or refresh provider rows from the configured API keys
    python -m lumen.cli seed-providers

    # Create an organization with an opening balance
    python -m lumen.cli create-org "Acme Studio" acme --credits 500

    # Add an admin (creates the account when the email is new)
    python -m lumen.cli add-member acme ops@acme.test --role admin --password 's3cret-pass'

    # Grant credits to an existing organization
    python -m lumen.cli grant-credits acme 250 --description "Pilot top-up"
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from lumen.core import timezone  # noqa: F401
from lumen.core.config import Settings, configure_logging
from lumen.core.database import init_db, setup_db_session
from lumen.models.credit_ledger import LedgerEntryType
from lumen.models.organization import Organization
from lumen.models.profile import ProfileRole
from lumen.services.auth import AuthService
from lumen.services.billing.ledger import CreditLedgerService
from lumen.services.exceptions import ServiceError
from lumen.services.providers.factory import default_providers
from lumen.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(prog="python -m lumen.cli", description="Lumen backend operations")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create all tables")
    commands.add_parser("seed-providers", help="Upsert provider rows from configured API keys")

    create_org = commands.add_parser("create-org", help="Create an organization")
    create_org.add_argument("name")
    create_org.add_argument("slug")
    create_org.add_argument("--credits", type=int, default=0, help="Opening balance (granted)")

    add_member = commands.add_parser("add-member", help="Add a user to an organization")
    add_member.add_argument("slug")
    add_member.add_argument("email")
    add_member.add_argument("--password", help="Required when the email has no account yet")
    add_member.add_argument("--name", default="", help="Full name shown in the organization")
    add_member.add_argument(
        "--role", choices=[role.value for role in ProfileRole], default=ProfileRole.MEMBER.value
    )

    grant = commands.add_parser("grant-credits", help="Grant credits to an organization")
    grant.add_argument("slug")
    grant.add_argument("amount", type=int)
    grant.add_argument("--description", default="Granted via CLI")

    return parser.parse_args(argv)


async def _seed_providers(uow_factory, settings: Settings) -> int:
    providers = default_providers(settings)
    if not providers:
        print("No provider API keys configured; nothing to seed", file=sys.stderr)
        return 1

    async with await uow_factory() as uow:
        for provider in providers:
            await uow.providers.upsert(provider)
            print(f"  {provider.slug:<16} {provider.category.value:<17} priority={provider.priority}")

    logger.info("cli.providers_seeded", count=len(providers))
    return 0


async def _create_org(uow_factory, name: str, slug: str, opening_credits: int) -> int:
    async with await uow_factory() as uow:
        if await uow.organizations.get_by_slug(slug) is not None:
            print(f"Error: organization '{slug}' already exists", file=sys.stderr)
            return 1
        org = await uow.organizations.add(Organization(name=name, slug=slug))

    if opening_credits > 0:
        ledger = CreditLedgerService(uow_factory)
        await ledger.credit(org.id, opening_credits, description="Opening balance")

    logger.info("cli.organization_created", organization_id=str(org.id), slug=slug)
    print(f"{org.id}  {slug}  credits={opening_credits}")
    return 0


async def _add_member(uow_factory, settings: Settings, args: Namespace) -> int:
    async with await uow_factory() as uow:
        org = await uow.organizations.get_by_slug(args.slug)
    if org is None:
        print(f"Error: organization '{args.slug}' not found", file=sys.stderr)
        return 1

    auth_service = AuthService(uow_factory, hash_rounds=settings.password_hash_rounds)
    user, profile = await auth_service.add_member(
        org.id,
        args.email,
        full_name=args.name,
        role=ProfileRole(args.role),
        password=args.password,
    )
    print(f"{user.id}  {user.email}  {args.slug}  role={profile.role.value}")
    return 0


async def _grant_credits(uow_factory, slug: str, amount: int, description: str) -> int:
    async with await uow_factory() as uow:
        org = await uow.organizations.get_by_slug(slug)
    if org is None:
        print(f"Error: organization '{slug}' not found", file=sys.stderr)
        return 1

    ledger = CreditLedgerService(uow_factory)
    result = await ledger.credit(
        org.id, amount, entry_type=LedgerEntryType.GRANT, description=description
    )
    print(f"{slug}: balance={result.balance}")
    return 0


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    engine = session_factory.kw["bind"]

    try:
        if args.command == "init-db":
            await init_db(engine)
            print("Tables created")
            return 0
        if args.command == "seed-providers":
            return await _seed_providers(uow_factory, settings)
        if args.command == "create-org":
            return await _create_org(uow_factory, args.name, args.slug, args.credits)
        if args.command == "add-member":
            return await _add_member(uow_factory, settings, args)
        return await _grant_credits(uow_factory, args.slug, args.amount, args.description)

    except ServiceError as e:
        logger.error("cli.service_error", error=str(e), error_type=type(e).__name__)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        return 130

    finally:
        await engine.dispose()


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
