"""Teamcenter adapter contract: raw preference payloads, errors and the source protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Protocol, Sequence


class TeamcenterAdapterError(RuntimeError):
    """Base error for Teamcenter adapter failures."""


class TeamcenterAuthError(TeamcenterAdapterError):
    """Raised when the server rejects the login handshake."""


class TeamcenterFetchError(TeamcenterAdapterError):
    """Raised when the preference listing cannot be retrieved or parsed."""


def _payload_flag(data: Mapping[str, Any], key: str) -> bool:
    """Strict boolean field: real bools or the strings ``"true"``/``"false"``."""
    value = data.get(key, False)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise TeamcenterFetchError(f"Preference field '{key}' is not a boolean: {value!r}.")


def _payload_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise TeamcenterFetchError(f"Preference {what} is not an object: {value!r}.")
    return value


@dataclass(frozen=True)
class PreferenceDefinition:
    name: str
    category: str = ""
    description: str = ""
    type: int = 0
    is_array: bool = False
    is_disabled: bool = False
    protection_scope: str = ""
    is_env_enabled: bool = False
    is_ootb_preference: bool = False


@dataclass(frozen=True)
class PreferenceValues:
    value_origination: Optional[str] = None
    values: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RawPreferenceEntry:
    """One fetched preference: its definition and, when reported, its values."""

    definition: PreferenceDefinition
    values: Optional[PreferenceValues] = None

    @property
    def name(self) -> str:
        return self.definition.name

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RawPreferenceEntry":
        """
        Build an entry from a Teamcenter JSON payload.

        Missing optional fields fall back to their defaults. Any malformed
        field (a missing definition name, a non-numeric type, a non-boolean
        flag, a values block that is not an object) raises ``TeamcenterFetchError``.
        """
        try:
            return cls._parse(_payload_mapping(payload, "entry"))
        except (ValueError, TypeError, AttributeError) as exc:
            raise TeamcenterFetchError(f"Malformed preference payload: {exc}") from exc

    @classmethod
    def _parse(cls, payload: Mapping[str, Any]) -> "RawPreferenceEntry":
        definition_data = _payload_mapping(payload.get("definition") or {}, "definition")
        name = definition_data.get("name")
        if not name:
            raise TeamcenterFetchError("Preference payload is missing a definition name.")
        type_code = definition_data.get("type") or 0
        if isinstance(type_code, bool):
            raise TeamcenterFetchError(f"Preference type is not a number: {type_code!r}.")
        definition = PreferenceDefinition(
            name=str(name),
            category=str(definition_data.get("category") or ""),
            description=str(definition_data.get("description") or ""),
            type=int(type_code),
            is_array=_payload_flag(definition_data, "isArray"),
            is_disabled=_payload_flag(definition_data, "isDisabled"),
            protection_scope=str(definition_data.get("protectionScope") or ""),
            is_env_enabled=_payload_flag(definition_data, "isEnvEnabled"),
            is_ootb_preference=_payload_flag(definition_data, "isOOTBPreference"),
        )
        values_data = payload.get("values")
        values = None
        if values_data is not None:
            values_data = _payload_mapping(values_data, "values")
            raw_values = values_data.get("values") or []
            if isinstance(raw_values, (str, bytes)) or not isinstance(raw_values, Sequence):
                raise TeamcenterFetchError(f"Preference values are not a list: {raw_values!r}.")
            origination = values_data.get("valueOrigination")
            values = PreferenceValues(
                value_origination=str(origination) if origination is not None else None,
                values=[str(value) for value in raw_values],
            )
        return cls(definition=definition, values=values)


@dataclass
class TeamcenterSession:
    """Authenticated session handle returned by ``PreferenceSource.login``."""

    base_url: str
    username: str
    http: Any = None


class PreferenceSource(Protocol):
    """Interface the importer needs from a remote preference source."""

    def login(self, base_url: str, username: str, password: str) -> TeamcenterSession:
        ...

    def fetch_preferences(
        self,
        session: TeamcenterSession,
        name_patterns: Sequence[str],
        include_descriptions: bool,
    ) -> List[RawPreferenceEntry]:
        ...


__all__ = [
    "TeamcenterAdapterError",
    "TeamcenterAuthError",
    "TeamcenterFetchError",
    "PreferenceDefinition",
    "PreferenceValues",
    "RawPreferenceEntry",
    "TeamcenterSession",
    "PreferenceSource",
]
