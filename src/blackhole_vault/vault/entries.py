"""Vault mutations: add/edit/delete/reorder/search entries and scratch text.

All functions return a new PlaintextVault and leave the input untouched.
None of them bump ``meta.version``; VaultSession.save() does that once per
saved mutation.
"""

import copy
import uuid
from dataclasses import replace
from typing import Dict, List, Optional

from .models import (
    ENTRY_KIND_API,
    ENTRY_KIND_PASSWORD,
    ENTRY_KINDS,
    PlaintextVault,
    VaultEntry,
    utc_now_iso,
)


def _check_kind(kind: str) -> None:
    if kind not in ENTRY_KINDS:
        raise ValueError(f"Unknown entry kind: {kind!r}")


def new_entry(
    service: str,
    secret: str,
    kind: str = ENTRY_KIND_PASSWORD,
    username: Optional[str] = None,
    remarks: Optional[str] = None,
    custom: Optional[Dict[str, str]] = None,
) -> VaultEntry:
    """
    Build a new entry with a fresh id.

    The secret lands in ``password`` for password entries and in ``apikey``
    for API entries. Custom attributes with an empty key are dropped.
    """
    _check_kind(kind)
    if not service or not secret:
        raise ValueError("Service and secret are required")

    cleaned = {k: v for k, v in (custom or {}).items() if k}
    now = utc_now_iso()
    return VaultEntry(
        id=str(uuid.uuid4()),
        service=service,
        created_at=now,
        updated_at=now,
        username=username if kind == ENTRY_KIND_PASSWORD else None,
        password=secret if kind == ENTRY_KIND_PASSWORD else None,
        apikey=secret if kind == ENTRY_KIND_API else None,
        remarks=remarks,
        custom=cleaned or None,
    )


def upsert_entry(vault: PlaintextVault, entry: VaultEntry, kind: str) -> PlaintextVault:
    """
    Insert or replace an entry, matched by id.

    New entries are prepended. An existing entry is replaced wholesale (no
    field-level patching); its createdAt is kept and updatedAt refreshed.
    """
    _check_kind(kind)
    result = copy.deepcopy(vault)
    items = result.entries(kind)

    for index, existing in enumerate(items):
        if existing.id == entry.id:
            items[index] = replace(
                copy.deepcopy(entry),
                created_at=existing.created_at,
                updated_at=utc_now_iso(),
            )
            return result

    items.insert(0, copy.deepcopy(entry))
    return result


def delete_entry(vault: PlaintextVault, entry_id: str, kind: str) -> PlaintextVault:
    """Remove an entry by id. Raises KeyError if it does not exist."""
    _check_kind(kind)
    result = copy.deepcopy(vault)
    items = result.entries(kind)
    remaining = [e for e in items if e.id != entry_id]
    if len(remaining) == len(items):
        raise KeyError(entry_id)
    items[:] = remaining
    return result


def reorder_entries(vault: PlaintextVault, kind: str, ordered_ids: List[str]) -> PlaintextVault:
    """Reorder entries. ``ordered_ids`` must be a permutation of the current ids."""
    _check_kind(kind)
    result = copy.deepcopy(vault)
    items = result.entries(kind)
    by_id = {e.id: e for e in items}

    if len(ordered_ids) != len(items) or set(ordered_ids) != set(by_id):
        raise ValueError("ordered_ids must contain every entry id exactly once")

    items[:] = [by_id[i] for i in ordered_ids]
    return result


def search_entries(vault: PlaintextVault, kind: str, query: str) -> List[VaultEntry]:
    """Case-insensitive substring match on service (and username for passwords)."""
    _check_kind(kind)
    items = vault.entries(kind)
    needle = (query or "").strip().lower()
    if not needle:
        return list(items)

    matches = []
    for entry in items:
        if needle in entry.service.lower():
            matches.append(entry)
        elif kind == ENTRY_KIND_PASSWORD and entry.username and needle in entry.username.lower():
            matches.append(entry)
    return matches


def update_scratch(vault: PlaintextVault, text: str) -> PlaintextVault:
    """Replace the playground scratch text."""
    result = copy.deepcopy(vault)
    result.scratch = text
    return result
