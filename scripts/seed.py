#!/usr/bin/env python3
"""Seed a development database with demo data.

Creates:
  - the demo application and the UserSubject / UserController / UserDPO
    accounts (password = username)
  - a second application, "Fitness Tracker", shared by the subject and DPO
  - a first privacy notice for each application, built from the template
  - a couple of consents and one pending access request
  - prints a bearer token for every demo account

Idempotent: safe to run multiple times - existing users, applications and
notices are reused rather than duplicated.

Usage:
    # From project root (database must be running and migrated)
    python scripts/seed.py
"""

from __future__ import annotations

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Ensure the project root is on sys.path so "src.*" imports work whether
# this script is run directly or via "python scripts/seed.py".
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

SECOND_APPLICATION = "Fitness Tracker"

NOTICE_ANSWERS: dict[str, str] = {
    "data_collected": "Account details, device identifiers and usage statistics.",
    "collection": "Directly from you and from the devices you connect.",
    "usage": "To operate the service and, with your consent, to improve it.",
    "storage": "Encrypted at rest in EU data centres for at most 24 months.",
    "rights": "Access, rectification, erasure, restriction, portability and objection.",
    "contact": "Write to the DPO through the privacy dashboard.",
    "authority": "Your national data protection authority.",
}


async def seed() -> None:
    from sqlalchemy import select

    from src.auth.tokens import create_access_token
    from src.config import get_settings
    from src.database import close_db, create_all, get_session_factory, init_db
    from src.models.application import Application
    from src.models.gdpr_request import GDPRRequestRecord
    from src.notifications.dispatcher import NotificationDispatcher
    from src.services.consent_ledger import ConsentLedger
    from src.services.gdpr_workflow import GDPRWorkflow
    from src.services.privacy_notices import PrivacyNoticeRegistry, build_from_template
    from src.services.provisioning import ProvisioningService
    from src.telemetry.logging import configure_logging

    settings = get_settings()
    configure_logging(json_logs=False, log_level="WARNING")
    init_db(settings)
    if settings.db_create_all:
        await create_all()

    # Notifications raised while seeding are only logged
    dispatcher = NotificationDispatcher()
    await dispatcher.start()

    async with get_session_factory()() as db:
        provisioning = ProvisioningService(db)
        world = await provisioning.seed_demo_accounts()
        subject = world.users["UserSubject"]
        controller = world.users["UserController"]
        dpo = world.users["UserDPO"]
        print(f"  [+] Demo application: {world.application.name} ({world.application.id})")

        result = await db.execute(select(Application).where(Application.name == SECOND_APPLICATION))
        fitness = result.scalar_one_or_none()
        if fitness is None:
            fitness = await provisioning.create_application(
                SECOND_APPLICATION, "Wearable activity and heart-rate tracking"
            )
            print(f"  [+] Application created: {fitness.name} ({fitness.id})")
        else:
            print(f"  [~] Application exists:  {fitness.name} ({fitness.id})")
        await provisioning.associate(subject.id, fitness.id)
        await provisioning.associate(dpo.id, fitness.id)

        notices = PrivacyNoticeRegistry(db, dispatcher)
        for app, author in ((world.application, controller), (fitness, dpo)):
            if await notices.history(app.id):
                print(f"  [~] Privacy notice exists: {app.name}")
                continue
            content = build_from_template(NOTICE_ANSWERS, title=f"{app.name} privacy notice")
            notice = await notices.publish(author.id, app.id, content)
            print(f"  [+] Privacy notice v{notice.version}: {app.name}")

        ledger = ConsentLedger(db)
        if not await ledger.list_consents(subject.id):
            await ledger.grant(subject.id, world.application.id, "analytics")
            await ledger.grant(subject.id, fitness.id, "health_data_processing")
            print("  [+] Consents granted")

        existing = await db.execute(
            select(GDPRRequestRecord.id).where(GDPRRequestRecord.subject_id == subject.id)
        )
        if existing.first() is None:
            await GDPRWorkflow(db, dispatcher).submit(
                subject.id,
                world.application.id,
                "access",
                details="Please send me a copy of everything you store about me.",
            )
            print("  [+] Pending access request filed")

        await db.commit()

    await dispatcher.shutdown(drain=True)
    await close_db()

    divider = "=" * 72
    print(f"\n{divider}")
    print("SEED COMPLETE - Demo accounts (password = username), tokens valid 30 days:")
    print(divider)
    for username, user in world.users.items():
        token = create_access_token(
            user_id=user.id,
            role=user.role,
            name=user.name,
            settings=settings,
            expires_in=timedelta(days=30),
        )
        print(f"\n  {username} ({user.role})\n  {token}")
    print(f"\n{divider}\n")


if __name__ == "__main__":
    asyncio.run(seed())
