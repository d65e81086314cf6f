"""
Teamcenter preference XML export.

Builds the ``<preferences version="10.0">`` document consumed by Teamcenter's
preference import tooling. The layout (two-space indentation, attribute
order, an explicit empty ``<context>`` pair) is byte-relevant.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable, List, Sequence

from tcprefs_app.models import Preference, PreferenceRevision, preference_type_label, utcnow
from tcprefs_app.utils.text import locale_sort_key

XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n'
CONTEXT_NAME = "Teamcenter"


def xml_escape(value: str | None) -> str:
    text = value or ""
    text = text.replace("&", "&amp;")
    text = text.replace("<", "&lt;")
    text = text.replace(">", "&gt;")
    text = text.replace('"', "&quot;")
    text = text.replace("'", "&apos;")
    return text


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _preference_lines(preference: Preference, values: Sequence[str] | None) -> List[str]:
    lines = [
        f'    <preference name="{xml_escape(preference.name)}" '
        f'type="{preference_type_label(preference.type_code)}" array="{_flag(preference.is_array)}" '
        f'disabled="{_flag(preference.is_disabled)}" '
        f'protectionScope="{xml_escape(preference.protection_scope)}" '
        f'envEnabled="{_flag(preference.is_env_enabled)}">',
        f"      <preference_description>{xml_escape(preference.description)}</preference_description>",
        f'      <context name="{CONTEXT_NAME}">',
    ]
    lines.extend(f"        <value>{xml_escape(value)}</value>" for value in values or ())
    lines.append("      </context>")
    lines.append("    </preference>")
    return lines


def _category_open(category: str) -> List[str]:
    return [
        f'  <category name="{xml_escape(category)}">',
        "    <category_description></category_description>",
    ]


def build_preferences_xml(preferences: Iterable[Preference]) -> str:
    """Render preferences grouped by category (categories, then names, locale-sorted)."""
    groups: dict[str, list[Preference]] = defaultdict(list)
    for preference in preferences:
        groups[preference.category].append(preference)

    lines = ['<preferences version="10.0">']
    for category in sorted(groups, key=locale_sort_key):
        lines.extend(_category_open(category))
        for preference in sorted(groups[category], key=lambda item: locale_sort_key(item.name)):
            lines.extend(_preference_lines(preference, preference.values))
        lines.append("  </category>")
    lines.append("</preferences>")
    return XML_HEADER + "\n".join(lines) + "\n"


def build_revision_xml(preference: Preference, revision: PreferenceRevision) -> str:
    """
    Render one historical revision: the preference's current definition with
    the revision's values.
    """
    lines = ['<preferences version="10.0">']
    lines.extend(_category_open(preference.category))
    lines.extend(_preference_lines(preference, revision.values))
    lines.append("  </category>")
    lines.append("</preferences>")
    return XML_HEADER + "\n".join(lines) + "\n"


def suggested_export_filename(
    preferences: Sequence[Preference],
    now: datetime | None = None,
    *,
    collection_name: str | None = None,
) -> str:
    """File name for an export: the collection, the single preference, or a timestamped batch."""
    if collection_name:
        return f"Pref_{collection_name}_collection.xml"
    if len(preferences) == 1:
        return f"{preferences[0].name}.xml"
    stamp = (now or utcnow()).strftime("%Y%m%d-%H%M%S")
    return f"preferences_export_{stamp}.xml"
