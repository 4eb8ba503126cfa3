"""CLI for firm onboarding, plans and operator tokens.

Usage::

    uv run python -m scripts.manage_firm <command> [options]

Commands:
    create-firm     Create a DRAFT firm with a fresh trial
    add-branch      Add a branch to a firm
    list-firms      List firms with lifecycle and subscription status
    set-plan        Set a firm's subscription status
    issue-token     Sign a bearer token for a role (dev / support use)
"""

from __future__ import annotations

import argparse
import sys
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from tenant_gate.auth.principal import Role
from tenant_gate.auth.tokens import IdentityVerifier
from tenant_gate.config import settings
from tenant_gate.firms.subscription import SubscriptionStatus
from tenant_gate.storage.firm_repository import new_firm
from tenant_gate.storage.orm import Branch, Firm


def get_sync_session() -> Session:
    """Create sync session for CLI operations.

    Uses the same database URL as the async app (psycopg v3
    handles both sync and async natively).
    """
    engine = create_engine(settings.database_url)
    return Session(engine)


def _find_firm(session: Session, name: str) -> Firm:
    firm = session.execute(select(Firm).where(Firm.name == name)).scalar_one_or_none()
    if firm is None:
        print(f"Firm not found: {name}", file=sys.stderr)
        sys.exit(1)
    return firm


def create_firm(args: argparse.Namespace) -> None:
    """Create a new firm in DRAFT with a trial window."""
    with get_sync_session() as session:
        existing = session.execute(
            select(Firm).where(Firm.name == args.name)
        ).scalar_one_or_none()
        if existing is not None:
            print(f"Firm already exists: {args.name}", file=sys.stderr)
            sys.exit(1)

        firm = new_firm(args.name, now=datetime.now(UTC), trial_days=args.trial_days)
        session.add(firm)
        session.commit()
        print(f"Firm created: {args.name} (id: {firm.id}, trial: {args.trial_days} days)")


def add_branch(args: argparse.Namespace) -> None:
    """Add a branch to an existing firm."""
    with get_sync_session() as session:
        firm = _find_firm(session, args.firm)
        branch = Branch(firm_id=firm.id, name=args.name)
        session.add(branch)
        session.commit()
        print(f"Branch created: {args.name} (id: {branch.id}) for {args.firm}")


def list_firms(_args: argparse.Namespace) -> None:
    """List all firms with lifecycle and subscription status."""
    with get_sync_session() as session:
        firms = session.execute(select(Firm).order_by(Firm.name)).scalars().all()

        if not firms:
            print("No firms found.")
            return

        print("Firms:")
        for i, firm in enumerate(firms, 1):
            visible = "visible" if firm.is_visible_in_client_app else "hidden"
            print(
                f"  {i}. {firm.name} ({firm.status}, {visible}, "
                f"{firm.subscription_status}) id={firm.id}"
            )


def set_plan(args: argparse.Namespace) -> None:
    """Set a firm's subscription status (e.g. after payment)."""
    with get_sync_session() as session:
        firm = _find_firm(session, args.firm)
        firm.subscription_status = SubscriptionStatus(args.plan)
        session.commit()
        print(f"Plan for {args.firm} set to {args.plan}")


def issue_token(args: argparse.Namespace) -> None:
    """Print a signed bearer token for the given identity."""
    verifier = IdentityVerifier(
        settings.jwt_secret.get_secret_value(),
        algorithm=settings.jwt_algorithm,
        expires_minutes=args.expires_minutes,
    )
    token = verifier.issue(
        user_id=uuid.UUID(args.user_id) if args.user_id else uuid.uuid4(),
        role=Role(args.role),
        tenant_id=uuid.UUID(args.firm_id) if args.firm_id else None,
        branch_id=uuid.UUID(args.branch_id) if args.branch_id else None,
    )
    print(token)


def main() -> None:
    """Parse arguments and dispatch to command handler."""
    parser = argparse.ArgumentParser(description="Firm management CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    # create-firm
    p = sub.add_parser("create-firm", help="Create a new firm")
    p.add_argument("--name", required=True, help="Firm name")
    p.add_argument(
        "--trial-days", type=int, default=settings.trial_days, help="Trial length"
    )

    # add-branch
    p = sub.add_parser("add-branch", help="Add a branch to a firm")
    p.add_argument("--firm", required=True, help="Firm name")
    p.add_argument("--name", required=True, help="Branch name")

    # list-firms
    sub.add_parser("list-firms", help="List all firms")

    # set-plan
    p = sub.add_parser("set-plan", help="Set subscription status")
    p.add_argument("--firm", required=True, help="Firm name")
    p.add_argument(
        "--plan",
        required=True,
        choices=[str(s) for s in SubscriptionStatus],
        help="Subscription status",
    )

    # issue-token
    p = sub.add_parser("issue-token", help="Sign a bearer token")
    p.add_argument("--role", required=True, choices=[str(r) for r in Role])
    p.add_argument("--user-id", default=None, help="Principal id (random if omitted)")
    p.add_argument("--firm-id", default=None, help="Tenant id claim")
    p.add_argument("--branch-id", default=None, help="Branch id claim")
    p.add_argument("--expires-minutes", type=int, default=settings.jwt_expires_minutes)

    args = parser.parse_args()
    commands: dict[str, Callable[[argparse.Namespace], None]] = {
        "create-firm": create_firm,
        "add-branch": add_branch,
        "list-firms": list_firms,
        "set-plan": set_plan,
        "issue-token": issue_token,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
