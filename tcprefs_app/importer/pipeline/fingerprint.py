"""
Change-detection fingerprints for preferences.

The digest covers the definition and value fields only; comments and
bookkeeping timestamps never participate. Field order and separators are part
of the stored format: changing either makes every stored preference look
changed on the next import.
"""

from __future__ import annotations

import hashlib
from typing import Sequence

from tcprefs_app.importer.adapters import RawPreferenceEntry

VALUE_SEPARATOR = "\u241f"
FIELD_SEPARATOR = "\u241e"


def _render_bool(value: bool) -> str:
    return "true" if value else "false"


def compute_fingerprint(
    *,
    name: str,
    category: str,
    description: str,
    type: int,
    is_array: bool,
    is_disabled: bool,
    protection_scope: str,
    is_env_enabled: bool,
    is_ootb_preference: bool,
    value_origination: str | None,
    values: Sequence[str] | None,
) -> str:
    """Return the lowercase hex MD5 fingerprint of a preference state."""

    joined_values = VALUE_SEPARATOR.join(values or ())
    base = FIELD_SEPARATOR.join(
        (
            name,
            category,
            description,
            str(int(type)),
            _render_bool(is_array),
            _render_bool(is_disabled),
            protection_scope,
            _render_bool(is_env_enabled),
            _render_bool(is_ootb_preference),
            value_origination or "",
            joined_values,
        )
    )
    # Change-detection checksum only, not a security boundary.
    return hashlib.md5(base.encode("utf-8")).hexdigest()


def fingerprint_entry(entry: RawPreferenceEntry) -> str:
    definition = entry.definition
    values = entry.values
    return compute_fingerprint(
        name=definition.name,
        category=definition.category,
        description=definition.description,
        type=definition.type,
        is_array=definition.is_array,
        is_disabled=definition.is_disabled,
        protection_scope=definition.protection_scope,
        is_env_enabled=definition.is_env_enabled,
        is_ootb_preference=definition.is_ootb_preference,
        value_origination=values.value_origination if values else None,
        values=values.values if values else None,
    )


def fingerprint_preference(preference) -> str:
    """Fingerprint of a stored ``Preference`` (or ``PreferenceRevision``)."""

    return compute_fingerprint(
        name=preference.name,
        category=preference.category,
        description=preference.description,
        type=preference.type_code,
        is_array=preference.is_array,
        is_disabled=preference.is_disabled,
        protection_scope=preference.protection_scope,
        is_env_enabled=preference.is_env_enabled,
        is_ootb_preference=preference.is_ootb_preference,
        value_origination=preference.value_origination,
        values=preference.values,
    )
