"""Lead Store — client-side cache of the most recently loaded leads.

The reducer functions are pure: they take a tuple of leads and return a new
tuple.  ``LeadStore`` only holds the current tuple, so optimistic apply and
rollback are deterministic and testable without a network.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Iterable

from lead_pipeline.constants import LEAD_STATUSES
from lead_pipeline.models import Lead

# Only these fields may change locally; server-computed flags never do.
PATCHABLE_FIELDS: frozenset[str] = frozenset({
    "status",
    "assigned_to",
    "notes",
    "estimated_value",
    "last_contact_at",
    "next_follow_up",
})


def _check_patch(patch: dict[str, Any]) -> None:
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise KeyError(f"Unpatchable lead field(s): {', '.join(sorted(unknown))}")


def apply_patch(
    leads: tuple[Lead, ...],
    lead_id: str,
    patch: dict[str, Any],
) -> tuple[Lead, ...]:
    """Return a new collection with ``patch`` applied to the matching lead.

    Leads other than ``lead_id`` are carried over unchanged.  An unknown
    ``lead_id`` returns an equal collection.
    """
    _check_patch(patch)
    return tuple(
        dataclasses.replace(lead, **patch) if lead.id == lead_id else lead
        for lead in leads
    )


def put_lead(leads: tuple[Lead, ...], updated: Lead) -> tuple[Lead, ...]:
    """Replace a lead wholesale with a server representation."""
    return tuple(updated if lead.id == updated.id else lead for lead in leads)


def group_by_status(leads: Iterable[Lead]) -> dict[str, list[Lead]]:
    """Partition leads into board columns, one key per status in board order.

    Leads with a status outside the board are left out of every column.
    """
    columns: dict[str, list[Lead]] = {status: [] for status in LEAD_STATUSES}
    for lead in leads:
        column = columns.get(lead.status)
        if column is not None:
            column.append(lead)
    return columns


def _search_haystack(lead: Lead) -> list[str]:
    fields = [lead.name, lead.message]
    if lead.vehicle is not None:
        fields.append(lead.vehicle.title)
        brand_model = " ".join(
            part for part in (lead.vehicle.brand, lead.vehicle.model) if part
        )
        if brand_model:
            fields.append(brand_model)
    return [f.lower() for f in fields if f]


def matches_search(lead: Lead, query: str) -> bool:
    """Case-insensitive substring match over name, vehicle, and last message."""
    needle = query.strip().lower()
    if not needle:
        return True
    return any(needle in field for field in _search_haystack(lead))


def search_leads(leads: Iterable[Lead], query: str) -> list[Lead]:
    return [lead for lead in leads if matches_search(lead, query)]


class LeadStore:
    """Holds the latest lead collection; every write swaps in a new tuple."""

    def __init__(self, leads: Iterable[Lead] = ()) -> None:
        self._leads: tuple[Lead, ...] = tuple(leads)

    @property
    def leads(self) -> tuple[Lead, ...]:
        return self._leads

    def __len__(self) -> int:
        return len(self._leads)

    def reset(self, leads: Iterable[Lead]) -> None:
        """Replace the whole collection (successful board load)."""
        self._leads = tuple(leads)

    def get(self, lead_id: str) -> Lead | None:
        for lead in self._leads:
            if lead.id == lead_id:
                return lead
        return None

    def snapshot(self, lead_id: str) -> Lead | None:
        """Capture a lead for later rollback.  Leads are immutable, so the
        current instance is the snapshot."""
        return self.get(lead_id)

    def replace(self, lead_id: str, patch: dict[str, Any]) -> tuple[Lead, ...]:
        self._leads = apply_patch(self._leads, lead_id, patch)
        return self._leads

    def put(self, lead: Lead) -> tuple[Lead, ...]:
        self._leads = put_lead(self._leads, lead)
        return self._leads

    def group_by_status(self) -> dict[str, list[Lead]]:
        return group_by_status(self._leads)

    def counts(self) -> dict[str, int]:
        return {status: len(items) for status, items in self.group_by_status().items()}

    def search(self, query: str) -> list[Lead]:
        return search_leads(self._leads, query)
