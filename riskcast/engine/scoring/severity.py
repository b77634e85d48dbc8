"""
Severity resolution for scoring.

Events are named by definition label or display group. A label's severity
comes from the user's severity mappings; a display group takes the most
severe mapping among its member definitions. Prodrome events resolve
against their own map so a prodrome group never borrows a trigger group's
severity. Names are matched case-insensitively.
"""

from typing import Optional

from riskcast.models.definitions import Definition
from riskcast.models.enums import EventKind, Severity
from riskcast.storage.base import StorageBackend


def most_severe(a: Optional[Severity], b: Severity) -> Severity:
    if a is None or b.rank > a.rank:
        return b
    return a


class SeverityResolver:
    """
    Maps an event name to its scoring severity.

    Example:
        >>> resolver = SeverityResolver.for_user(storage, "user-1")
        >>> resolver.resolve("Poor sleep")
        <Severity.HIGH: 'HIGH'>
    """

    def __init__(self, definitions: list[Definition], mappings: dict[str, Severity]):
        base = {label.lower(): severity for label, severity in mappings.items()}
        self._maps: dict[EventKind, dict[str, Severity]] = {
            EventKind.TRIGGER: dict(base),
            EventKind.PRODROME: dict(base),
        }

        for definition in definitions:
            if not definition.display_group:
                continue
            severity = base.get(definition.label.lower(), Severity.NONE)
            by_name = self._maps[definition.kind]
            group = definition.display_group.lower()
            by_name[group] = most_severe(by_name.get(group), severity)

    @classmethod
    def for_user(cls, storage: StorageBackend, user_id: str) -> "SeverityResolver":
        return cls(storage.read_definitions(user_id), storage.read_severity_mappings(user_id))

    def resolve(self, name: str, kind: EventKind = EventKind.TRIGGER) -> Severity:
        """Severity for an event name; unknown names are NONE."""
        return self._maps[kind].get(name.lower(), Severity.NONE)
