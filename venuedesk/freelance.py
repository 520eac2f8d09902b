"""
Freelance validation.

Responsibilities:
- Decide whether a worker may hold a candidate set of current venues.
- Decide whether a venue may leave the restricted category.

Non-Responsibilities:
- No writes.
- No cross-worker checks: a venue may employ any number of workers.

Invariant:
A regular worker holds at most one current venue; a freelance worker may
hold several, all in the restricted category.
"""

from typing import List, Optional

from .config import RESTRICTED_CATEGORY
from .errors import BusinessRuleError


def check_freelance_rules(
    store,
    worker_id: Optional[str],
    is_freelance: bool,
    venue_ids: List[str],
    restricted_category: str = RESTRICTED_CATEGORY,
) -> List[str]:
    """
    Returns a list of rule violations. Empty list means admissible.

    Args:
        store: Relation store used to read venue categories
        worker_id: Existing worker id, or None for a worker being created
        is_freelance: The worker's flag after the change
        venue_ids: Venues the worker would be currently associated with
        restricted_category: The only category freelancers may work in
    """
    errors: List[str] = []
    subject = f"Worker {worker_id}" if worker_id else "A new worker"

    if not is_freelance and len(venue_ids) > 1:
        errors.append(
            f"{subject} is not freelance and can have only one current venue "
            f"({len(venue_ids)} given)"
        )

    venues = store.get_venues(venue_ids)
    for venue_id in venue_ids:
        venue = venues.get(venue_id)
        if venue is None:
            errors.append(f"Venue not found: {venue_id}")
        elif is_freelance and venue["category"] != restricted_category:
            errors.append(
                f"Freelancers can only be associated with {restricted_category} venues; "
                f"'{venue['name']}' ({venue_id}) is a {venue['category']}"
            )

    return errors


def ensure_freelance_rules(
    store,
    worker_id: Optional[str],
    is_freelance: bool,
    venue_ids: List[str],
    restricted_category: str = RESTRICTED_CATEGORY,
) -> None:
    """Raise BusinessRuleError if check_freelance_rules reports anything."""
    errors = check_freelance_rules(store, worker_id, is_freelance, venue_ids, restricted_category)
    if errors:
        raise BusinessRuleError("; ".join(errors))


def check_category_change(
    store,
    venue: dict,
    new_category: Optional[str],
    restricted_category: str = RESTRICTED_CATEGORY,
) -> List[str]:
    """
    Returns violations caused by moving a venue out of the restricted
    category while freelancers are still currently associated with it.
    """
    if new_category is None or new_category == venue.get("category"):
        return []
    if venue.get("category") != restricted_category:
        return []

    freelancers = store.current_freelancers_at(venue["id"])
    if not freelancers:
        return []
    names = ", ".join(w["name"] for w in freelancers)
    return [
        f"'{venue['name']}' cannot leave the {restricted_category} category while "
        f"freelancers are associated with it ({names})"
    ]


def ensure_category_change(
    store,
    venue: dict,
    new_category: Optional[str],
    restricted_category: str = RESTRICTED_CATEGORY,
) -> None:
    errors = check_category_change(store, venue, new_category, restricted_category)
    if errors:
        raise BusinessRuleError("; ".join(errors))
