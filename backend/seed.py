"""Seed script for demo data. Run with: python seed.py [--if-empty]"""
import argparse
import asyncio
import json
from pathlib import Path

from sqlalchemy import select

from helpdesk.config import settings
from helpdesk.database import async_session
from helpdesk.models import ApiKey, Role, SlaRule, Team, TeamMembership, User
from helpdesk.models.base import TicketPriority
from helpdesk.schemas.organization import InitialSetupRequest
from helpdesk.services import organization_service
from helpdesk.services.auth_service import generate_api_key, hash_password

SEED_PATHS = [
    Path("/config/seed.json"),
    Path(__file__).resolve().parent / "seed.json",
]

# Resolution targets in minutes, most specific first
SLA_DEFAULTS = [
    {"name": "Urgent", "conditions": {"priority": TicketPriority.urgent.value}, "target_resolution_minutes": 240},
    {"name": "High", "conditions": {"priority": TicketPriority.high.value}, "target_resolution_minutes": 480},
    {"name": "Default", "conditions": {}, "target_resolution_minutes": 1440, "target_close_minutes": 4320},
]


def load_seed_data() -> tuple[list[dict], list[dict]]:
    """Load teams and users from seed.json. Returns empty lists if not found."""
    seed_file = next((p for p in SEED_PATHS if p.exists()), None)
    if seed_file is None:
        print("No seed.json found, skipping demo users and teams.")
        return [], []

    with open(seed_file) as f:
        data = json.load(f)

    teams = data.get("teams", [])
    users = data.get("users", [])
    print(f"Loaded {len(teams)} teams and {len(users)} users from seed.json")
    return teams, users


async def seed(if_empty: bool = False):
    async with async_session() as db:
        if await organization_service.is_setup_complete(db):
            print("Database already seeded. Skipping.")
            return
        if if_empty:
            existing = await db.execute(select(User.id).limit(1))
            if existing.scalar_one_or_none():
                print("Users already exist. Skipping.")
                return

        _, admin = await organization_service.run_initial_setup(
            db,
            InitialSetupRequest(
                organization_name=settings.default_organization_name,
                time_zone=settings.default_time_zone,
                admin_username=settings.default_admin_username,
                admin_email=settings.default_admin_email,
                admin_first_name="System",
                admin_last_name="Administrator",
                admin_password=settings.default_admin_password,
            ),
        )

        seed_teams, seed_users = load_seed_data()

        team_map = {}
        for t in seed_teams:
            team = Team(**t)
            db.add(team)
            team_map[t["name"]] = team
        await db.flush()

        result = await db.execute(select(Role))
        role_map = {role.developer_name: role for role in result.scalars().all()}

        for u in seed_users:
            password = u.get("password", "password123")
            team_names = u.get("teams", [])
            role_names = u.get("roles", [])
            user_data = {
                k: v for k, v in u.items()
                if k not in ("teams", "roles", "password")
            }
            user = User(
                hashed_password=hash_password(password),
                roles=[role_map[name] for name in role_names if name in role_map],
                **user_data,
            )
            db.add(user)
            await db.flush()
            for team_name in team_names:
                if team_name in team_map:
                    db.add(TeamMembership(user_id=user.id, team_id=team_map[team_name].id))

        for sort_order, rule in enumerate(SLA_DEFAULTS, start=1):
            db.add(SlaRule(sort_order=sort_order, **rule))

        plain_key, key_hash, key_prefix = generate_api_key()
        db.add(
            ApiKey(
                name="Integration",
                key_hash=key_hash,
                key_prefix=key_prefix,
                user_id=admin.id,
            )
        )

        await db.commit()

        print("=" * 60)
        print("Seed data created successfully!")
        print(f"Admin user: {settings.default_admin_username}")
        print(f"API key: {plain_key}")
        print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--if-empty", action="store_true", help="Only seed if database is empty")
    args = parser.parse_args()
    asyncio.run(seed(if_empty=args.if_empty))
