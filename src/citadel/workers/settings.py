"""arq worker settings module.

Import path for arq CLI: arq citadel.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from citadel.config import get_settings
from citadel.workers.scheduled import (
    archive_leaderboard,
    process_scheduled_push,
    shutdown,
    startup,
    sync_reactions,
)


class WorkerSettings:
    """arq worker settings for the periodic batch jobs."""

    functions = [process_scheduled_push, sync_reactions, archive_leaderboard]
    cron_jobs = [
        cron(process_scheduled_push),
        cron(sync_reactions, minute=set(range(0, 60, 5))),
        # Sunday 09:55 UTC is 18:55 KST, five minutes before the weekly reset
        cron(archive_leaderboard, weekday="sun", hour=9, minute=55),
    ]
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 4
    job_timeout = 300
