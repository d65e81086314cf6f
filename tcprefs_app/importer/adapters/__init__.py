"""Remote source adapters feeding the preference importer."""

from __future__ import annotations

from .teamcenter import (
    PreferenceDefinition,
    PreferenceSource,
    PreferenceValues,
    RawPreferenceEntry,
    TeamcenterAdapterError,
    TeamcenterAuthError,
    TeamcenterFetchError,
    TeamcenterSession,
)
from .teamcenter.client import TeamcenterClient, create_teamcenter_client

__all__ = [
    "PreferenceDefinition",
    "PreferenceSource",
    "PreferenceValues",
    "RawPreferenceEntry",
    "TeamcenterAdapterError",
    "TeamcenterAuthError",
    "TeamcenterFetchError",
    "TeamcenterSession",
    "TeamcenterClient",
    "create_teamcenter_client",
]
