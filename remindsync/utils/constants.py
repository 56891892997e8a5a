"""Constants and default values."""

# Namespace prefix for every platform identifier this app registers
DEFAULT_APP_NAMESPACE = "remindsync"

# Rolling-window target sizes per cadence. These are policy, tuned to stay
# under the platform caps on simultaneously pending fixed-date triggers.
DEFAULT_WINDOW_SIZES = {
    "none": 1,
    "daily": 14,
    "weekly": 4,
    "monthly": 4,
    "yearly": 2,
}

# Lead-time thresholds for the delivery planner
DEFAULT_DAILY_LEAD_THRESHOLD_HOURS = 24
DEFAULT_WEEKLY_LEAD_THRESHOLD_DAYS = 7

# Instants closer than this to "now" are never registered
FUTURE_MARGIN_SECONDS = 60

# Migration semaphore is overridable after this long
DEFAULT_MIGRATION_STALE_MINUTES = 5

# An instance claim not activated within this time is released
STALE_CLAIM_MINUTES = 5

# Occurrence catch-up hard iteration cap
DEFAULT_CATCHUP_MAX_ITERATIONS = 200

# Calendar drift check
DEFAULT_CALENDAR_CHECK_TIMEOUT = 5.0
CALENDAR_CHECK_LIMIT = 10
CALENDAR_SEARCH_WINDOW_DAYS = 30

# Reconcile summary surfacing
RECONCILE_MODES = ("silent", "alert")
DEFAULT_RECONCILE_MODE = "silent"

# Default timezone
DEFAULT_TIMEZONE = "UTC"

# Preference keys
PREF_LAST_NOTIFICATION_PERMISSION = "lastKnownNotificationPermission"
PREF_LAST_ALARM_PERMISSION = "lastKnownAlarmPermission"
PREF_ALARM_PERMISSION_DENIED = "alarmPermissionDenied"
PREF_RECONCILE_MODE = "orphanReconcileMode"

# Alarm category used where the backend supports grouping
ALARM_CATEGORY = "remindsync-reminders"

# User-visible warnings
NOTIFICATION_PERMISSION_REMOVED_MESSAGE = (
    "Notification permission was turned off. All scheduled reminders were "
    "cancelled and moved to the archive."
)
ALARM_PERMISSION_REMOVED_MESSAGE = (
    "Alarm permission was turned off. Reminders will still notify you, but "
    "alarms have been removed."
)
