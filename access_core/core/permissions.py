from __future__ import annotations

from enum import Enum
from typing import Iterable, Iterator, List

ADMIN_ROLE = "admin"
USER_ROLE = "user"


class Capability(str, Enum):
    VIEW_DASHBOARD = "can_view_dashboard"
    VIEW_HOSTS = "can_view_hosts"
    MANAGE_HOSTS = "can_manage_hosts"
    VIEW_PACKAGES = "can_view_packages"
    MANAGE_PACKAGES = "can_manage_packages"
    VIEW_USERS = "can_view_users"
    MANAGE_USERS = "can_manage_users"
    VIEW_REPORTS = "can_view_reports"
    EXPORT_DATA = "can_export_data"
    MANAGE_SETTINGS = "can_manage_settings"

    @classmethod
    def list_all(cls) -> List[str]:
        return [cap.value for cap in cls]

    @classmethod
    def normalize(cls, values: Iterable[str]) -> List[str]:
        """Keep known capability names only, deduplicated and sorted."""
        allowed = set(cls.list_all())
        return sorted({value for value in values if value in allowed})


DEFAULT_ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    ADMIN_ROLE: frozenset(Capability.list_all()),
    USER_ROLE: frozenset(
        {
            Capability.VIEW_DASHBOARD.value,
            Capability.VIEW_HOSTS.value,
            Capability.VIEW_PACKAGES.value,
            Capability.VIEW_REPORTS.value,
        }
    ),
}


class CapabilitySet:
    """Immutable set of capability names attached to an authenticated principal."""

    __slots__ = ("role", "_names")

    def __init__(self, role: str, names: Iterable[str] = ()) -> None:
        self.role = role
        self._names = frozenset(Capability.normalize(names))

    @classmethod
    def for_role(cls, role: str) -> "CapabilitySet":
        return cls(role, DEFAULT_ROLE_CAPABILITIES.get(role, ()))

    def has(self, capability: Capability | str) -> bool:
        name = capability.value if isinstance(capability, Capability) else capability
        return name in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._names))

    def __len__(self) -> int:
        return len(self._names)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CapabilitySet):
            return NotImplemented
        return self.role == other.role and self._names == other._names

    def __hash__(self) -> int:
        return hash((self.role, self._names))

    def as_dict(self) -> dict[str, bool]:
        return {name: name in self._names for name in Capability.list_all()}
