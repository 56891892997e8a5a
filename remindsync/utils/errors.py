"""Error taxonomy shared by the scheduling core."""

import logging

logger = logging.getLogger(__name__)


class RemindSyncError(Exception):
    """Base class for scheduling core errors."""


class NotFoundError(RemindSyncError):
    """The backend item is already gone. Always non-fatal."""


class PermissionDeniedError(RemindSyncError):
    """The backend refused because a permission is missing."""


class BackendUnavailableError(RemindSyncError):
    """A native backend could not be reached. Retried on the next pass."""


class DataCorruptionError(RemindSyncError):
    """A persisted value (usually a trigger descriptor) cannot be parsed."""


def is_not_found(error: BaseException) -> bool:
    """Check whether an error from a backend means "already gone".

    Backends are expected to raise NotFoundError, but platform bridges often
    only carry a message, so the usual spellings are accepted too.
    """
    if isinstance(error, NotFoundError):
        return True
    message = str(error)
    return "not found" in message.lower() or "NOT_FOUND" in message


async def cancel_quietly(cancel, identifier: str) -> bool:
    """Run a backend cancel call, treating "not found" as success.

    Returns:
        True if the item is gone afterwards, False if the cancel failed
    """
    try:
        await cancel(identifier)
        return True
    except Exception as e:
        if is_not_found(e):
            logger.debug(f"{identifier} not found (already cancelled)")
            return True
        logger.error(f"Failed to cancel {identifier}: {e}")
        return False
