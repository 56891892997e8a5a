"""Structured identifiers for platform-registered items.

Every identifier the core hands to a backend is built here, and every
identifier read back from a backend is interpreted here. Nothing else in
the package slices identifier strings.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from remindsync.config import Config

INSTANCE_MARKER = "instance"


@dataclass(frozen=True)
class ReminderId:
    """A reminder id: {app namespace, local id}."""

    namespace: str
    local_id: str

    def __str__(self) -> str:
        return f"{self.namespace}-{self.local_id}"

    @classmethod
    def new(cls, namespace: str | None = None) -> "ReminderId":
        return cls(namespace=namespace or Config.APP_NAMESPACE, local_id=uuid.uuid4().hex)

    @classmethod
    def parse(cls, value: str, namespace: str | None = None) -> "ReminderId | None":
        """Parse a stored reminder id, or None if it is not in the namespace."""
        namespace = namespace or Config.APP_NAMESPACE
        prefix = f"{namespace}-"
        if not value.startswith(prefix):
            return None
        local_id = value[len(prefix):]
        if not local_id or local_id.startswith(f"{INSTANCE_MARKER}-"):
            return None
        return cls(namespace=namespace, local_id=local_id)

    def instance_id(self, fire_instant: datetime) -> str:
        """Deterministic identifier for one rolling-window instance.

        The same (reminder, instant) always maps to the same identifier, so
        registering it twice replaces rather than duplicates.
        """
        return f"{self.namespace}-{INSTANCE_MARKER}-{self.local_id}-{int(fire_instant.timestamp())}"


def in_namespace(identifier: str, namespace: str | None = None) -> bool:
    """Check whether a platform identifier was registered by this app."""
    namespace = namespace or Config.APP_NAMESPACE
    return identifier.startswith(f"{namespace}-")


def is_instance_identifier(identifier: str, namespace: str | None = None) -> bool:
    namespace = namespace or Config.APP_NAMESPACE
    return identifier.startswith(f"{namespace}-{INSTANCE_MARKER}-")


def resolve_parent_id(identifier: str, embedded_parent_id: object = None) -> str:
    """Logical parent of a platform notification.

    Instances carry their parent in the notification content; main
    notifications are registered under the parent id itself.
    """
    if isinstance(embedded_parent_id, str) and embedded_parent_id:
        return embedded_parent_id
    return identifier


def instance_id_for(parent_id: str, fire_instant: datetime) -> str:
    """Instance identifier for a stored parent id.

    Parent ids outside the current namespace (older data, imports) still get
    a unique, deterministic identifier under the current namespace.
    """
    parsed = ReminderId.parse(parent_id)
    if parsed is None:
        parsed = ReminderId(namespace=Config.APP_NAMESPACE, local_id=parent_id)
    return parsed.instance_id(fire_instant)
