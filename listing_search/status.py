"""Status taxonomy: user-facing status labels to listing conditions.

Accepted labels (case-insensitive, single, comma-separated or list):
- "Active" (default)             -> not archived, standard_status = Active
- "Pending" / "Under Agreement"  -> not archived, standard_status IN (Pending, Active Under Contract)
- "Sold"                         -> archived, standard_status = Closed
"""

from dataclasses import dataclass
from types import MappingProxyType

from .predicates import AllOf, AnyOf, Equals, InList, Predicate
from .schemas import StandardStatus


@dataclass(frozen=True)
class StatusCategory:
    """Where a category lives (archived or not) and which statuses it covers."""

    name: str
    archived: bool
    statuses: tuple[str, ...]

    def predicate(self) -> Predicate:
        if len(self.statuses) == 1:
            status = Equals("standard_status", self.statuses[0])
        else:
            status = InList("standard_status", self.statuses)
        return AllOf((Equals("is_archived", self.archived), status))


ACTIVE = StatusCategory(
    name="Active",
    archived=False,
    statuses=(StandardStatus.ACTIVE.value,),
)
PENDING = StatusCategory(
    name="Pending",
    archived=False,
    statuses=(StandardStatus.PENDING.value, StandardStatus.ACTIVE_UNDER_CONTRACT.value),
)
SOLD = StatusCategory(
    name="Sold",
    archived=True,
    statuses=(StandardStatus.CLOSED.value,),
)

STATUS_CATEGORIES = MappingProxyType({
    "active": ACTIVE,
    "pending": PENDING,
    "under agreement": PENDING,
    "sold": SOLD,
})

DEFAULT_STATUS = ACTIVE


def _tokens(status: object) -> list[str]:
    if status is None:
        return []
    if isinstance(status, (list, tuple)):
        return [str(part).strip().lower() for part in status if part is not None]
    # Numbers and booleans go through their text form
    return [part.strip().lower() for part in str(status).split(",")]


class StatusResolver:
    """Maps status labels to predicates. Stateless; share one instance freely."""

    def categories(self, status: object) -> tuple[StatusCategory, ...]:
        """Recognised categories in input order, duplicates removed.

        Falls back to Active when nothing is recognised.
        """
        found: list[StatusCategory] = []
        for token in _tokens(status):
            category = STATUS_CATEGORIES.get(token)
            if category is not None and category not in found:
                found.append(category)
        return tuple(found) or (DEFAULT_STATUS,)

    def resolve(self, status: object) -> Predicate:
        """Resolve one or more status labels into a single predicate."""
        clauses = [category.predicate() for category in self.categories(status)]
        if len(clauses) == 1:
            return clauses[0]
        return AnyOf(tuple(clauses))

    def includes_archived(self, status: object) -> bool:
        """Whether the labels reach into archived listings (only Sold does)."""
        return any(token == "sold" for token in _tokens(status))
