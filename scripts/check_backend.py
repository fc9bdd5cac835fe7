"""
Backend check: probes the configured web app (or CSV exports) and, when a
credential is given, logs in and prints the inspector's agenda.
Run: python -m scripts.check_backend [RUT-or-email]
"""

import asyncio
import json
import sys

from dotenv import load_dotenv

load_dotenv()

from inmobapp.config import get_settings
from inmobapp.errors import ConfigurationError
from inmobapp.modules.api_client import get_last_call
from inmobapp.modules.store import create_store


async def check(credential: str | None = None):
    settings = get_settings()
    if not settings.webapp_url and not settings.roster_csv_url:
        print("ERROR: WEBAPP_URL (or ROSTER_CSV_URL) not set in .env")
        sys.exit(1)

    store = create_store(settings)
    try:
        status = await store.check_connection()
        print(f"Connection: {status.value}")
        print(json.dumps(get_last_call(), indent=2, ensure_ascii=False, default=str))

        if not credential:
            return

        try:
            result = await store.login(credential)
        except ConfigurationError as e:
            print(f"ERROR: {e.message}")
            sys.exit(1)

        if not result["ok"]:
            print(f"Login failed ({result['kind']}): {result['error']}")
            sys.exit(1)
        print(f"Logged in as {store.session.name} <{store.session.email}>")
        if not result["assignments_loaded"]:
            print(f"  Assignments could not be loaded: {result['assignments_error']}")

        today = store.get_scheduled_today()
        print(f"\nToday: {len(today)} units")
        for unit in today:
            print(f"  {unit.time or '--:--'}  {unit.project_id} {unit.number}  [{unit.proceso_status.value}]")

        upcoming = store.get_upcoming()
        print(f"Next {settings.upcoming_window_days} days: {len(upcoming)} units")
        for unit in upcoming:
            print(f"  {unit.date} {unit.time or '--:--'}  {unit.project_id} {unit.number}")

    finally:
        await store.dispose()


if __name__ == "__main__":
    asyncio.run(check(sys.argv[1] if len(sys.argv) > 1 else None))
