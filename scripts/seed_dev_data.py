"""Dev data seeder for Alarmcast.

Usage:
    python seed_dev_data.py                # Create alarms for user 1
    python seed_dev_data.py --user 7       # Create alarms for another user
    python seed_dev_data.py --clean        # Remove seeded alarms

Designed to run from the backend/ directory (CWD) so app imports resolve.
Saves created IDs to .vscode/.dev_seed_ids.json for cleanup.

Creates a mix of one-shot, weekly and reminder alarms, a couple of them due
within the next minutes so the scanner fires them right away, then prints an
access token and a channel token for trying the stream by hand.
"""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

# ---------------------------------------------------------------------------
# Bootstrap: add backend/ to sys.path so `app.*` imports work when invoked
# as `python ../scripts/seed_dev_data.py` from the backend/ directory.
# ---------------------------------------------------------------------------
BACKEND_DIR = Path(__file__).resolve().parent.parent / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.core.config import settings  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.db.session import AsyncSessionLocal, init_models  # noqa: E402
from app.models.alarm import AlarmKind, AlarmSource  # noqa: E402
from app.services import trigger_store  # noqa: E402
from app.services.channel_tokens import issue_channel_token  # noqa: E402
from app.services.recurrence import sunday_based_weekday  # noqa: E402

STATE_FILE = Path(__file__).resolve().parent.parent / ".vscode" / ".dev_seed_ids.json"

# Consistent "now" for seeding
NOW = datetime.now(timezone.utc)


def _save_state(state: dict) -> None:
    STATE_FILE.parent.mkdir(parents=True, exist_ok=True)
    STATE_FILE.write_text(json.dumps(state, indent=2))
    print(f"  State saved to {STATE_FILE}")


def _load_state() -> dict | None:
    if not STATE_FILE.exists():
        return None
    return json.loads(STATE_FILE.read_text())


def _user_id_from_argv() -> int:
    if "--user" in sys.argv:
        index = sys.argv.index("--user")
        try:
            return int(sys.argv[index + 1])
        except (IndexError, ValueError):
            print("ERROR: --user expects a numeric user id.")
            sys.exit(1)
    return 1


def _alarm_specs() -> list[dict]:
    """Alarms relative to NOW, expressed in the configured wall-clock zone."""
    local_now = NOW.astimezone(ZoneInfo(settings.ALARM_TIMEZONE))
    soon = local_now + timedelta(minutes=2)
    today = sunday_based_weekday(local_now.date())
    return [
        {
            "title": "Stretch break",
            "message": "Two minutes from seeding",
            "kind": AlarmKind.once,
            "scheduled_date": soon.date(),
            "time_of_day": soon.time().replace(second=0, microsecond=0),
        },
        {
            "title": "Standup",
            "message": "Daily sync",
            "kind": AlarmKind.repeat,
            "repeat_days": [1, 2, 3, 4, 5],
            "time_of_day": soon.time().replace(hour=9, minute=30, second=0, microsecond=0),
        },
        {
            "title": "Water the plants",
            "message": None,
            "kind": AlarmKind.repeat,
            "repeat_days": [today],
            "time_of_day": soon.time().replace(second=0, microsecond=0),
        },
        {
            "title": None,
            "message": "Quarterly report is due",
            "kind": AlarmKind.once,
            "scheduled_date": (local_now + timedelta(days=3)).date(),
            "time_of_day": soon.time().replace(hour=10, minute=0, second=0, microsecond=0),
            "source": AlarmSource.reminder,
            "reminder_id": 1,
        },
    ]


async def seed() -> None:
    if _load_state():
        print("Seed data already exists (.vscode/.dev_seed_ids.json found).")
        print("  Run with --clean first to remove existing data.")
        return

    user_id = _user_id_from_argv()
    print(f"Seeding alarms for user {user_id} ({settings.ALARM_TIMEZONE})...")
    await init_models()

    state: dict = {"alarms": []}
    async with AsyncSessionLocal() as session:
        for spec in _alarm_specs():
            alarm = await trigger_store.create_alarm(session, user_id=user_id, now=NOW, **spec)
            state["alarms"].append(alarm.id)
            print(f"  #{alarm.id} {alarm.title or '(reminder)'}: next at {alarm.next_trigger_at}")

    _save_state(state)

    channel = issue_channel_token(user_id)
    print("\nAccess token (Authorization: Bearer ...):")
    print(f"  {create_access_token(subject=user_id)}")
    print(f"Channel token (valid {channel.expires_in}s):")
    print(f"  {channel.token}")
    print(f"\n  curl -N '{settings.API_V1_STR}/notifications/stream?token={channel.token}'")


async def clean() -> None:
    state = _load_state()
    if not state:
        print("No seed state found; nothing to clean.")
        return

    async with AsyncSessionLocal() as session:
        for alarm_id in state.get("alarms", []):
            alarm = await trigger_store.get_alarm(session, alarm_id=alarm_id)
            if alarm:
                await session.delete(alarm)
        await session.commit()
    print(f"  Removed {len(state.get('alarms', []))} alarm(s)")

    STATE_FILE.unlink(missing_ok=True)
    print("Done! All seeded data removed.")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    if "--clean" in sys.argv:
        asyncio.run(clean())
    else:
        asyncio.run(seed())
