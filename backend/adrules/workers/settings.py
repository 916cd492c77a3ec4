"""
arq Worker Settings

Runs the automation engine and the jobs the dashboard enqueues:

    arq adrules.workers.settings.WorkerSettings
"""

import urllib.parse

from arq import cron
from arq.connections import RedisSettings

from adrules.config import settings
from adrules.workers.automation_worker import (
    report_engine_status,
    run_automation_rule,
    send_account_report,
    shutdown,
    startup,
)


def redis_settings_from_url(url: str) -> RedisSettings:
    """
    Parse a Redis URL.

    Format: redis://:password@host:port/db
    """
    parsed = urllib.parse.urlparse(url)

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path.lstrip("/") or 0),
    )


class WorkerSettings:
    """arq worker settings."""

    functions = [
        run_automation_rule,
        report_engine_status,
        send_account_report,
    ]

    cron_jobs = [
        # Engine health every 5 minutes
        cron(report_engine_status, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = redis_settings_from_url(settings.redis_url)

    # Job settings
    max_jobs = 10  # Max concurrent jobs
    job_timeout = 300  # 5 minutes
    keep_result = 3600  # Keep results for 1 hour
    max_tries = 1  # Manual runs have side effects; never retry
