"""
Cron scheduling of active jobs.
"""

from filebridge.scheduler.cron import CronExpression, get_timezone, next_fire_time, next_fire_times, parse_cron
from filebridge.scheduler.scheduler import JobScheduler

__all__ = [
    "CronExpression",
    "JobScheduler",
    "get_timezone",
    "next_fire_time",
    "next_fire_times",
    "parse_cron",
]
