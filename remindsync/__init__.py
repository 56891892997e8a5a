"""remindsync: keeps stored reminders and native notification/alarm schedules in sync."""

__version__ = "0.1.0"
