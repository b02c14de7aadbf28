"""
Background Jobs Module

Handles scheduled tasks for:
- Due scheduled notifications (payment reminders, review requests)
- Daily sales report to the shop admins
"""

from atelier.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
]
