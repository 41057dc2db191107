"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "ProviderSettings",
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".datamachine"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_API_KEY_FIELD = "api_key_ciphertext"
_FERNET_PREFIX = "fernet"
_ENV_OVERRIDES: Mapping[str, str] = {
    "DATAMACHINE_DEFAULT_PROVIDER": "default_provider",
    "DATAMACHINE_DEFAULT_MODEL": "default_model",
    "DATAMACHINE_GLOBAL_SYSTEM_PROMPT": "global_system_prompt",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "DATAMACHINE_DEBUG_LOGGING": "debug_logging",
    "DATAMACHINE_SITE_CONTEXT": "site_context_enabled",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "DATAMACHINE_MAX_TURNS": "max_turns",
}
# Provider name -> environment variable carrying its API key.
_PROVIDER_KEY_ENV: Mapping[str, str] = {
    "openai": "DATAMACHINE_OPENAI_API_KEY",
    "anthropic": "DATAMACHINE_ANTHROPIC_API_KEY",
}
_TRUE_VALUES = {"1", "true", "yes", "on"}
DEFAULT_MAX_TURNS = 12


@dataclass(slots=True)
class ProviderSettings:
    """Connection settings for one AI provider."""

    api_key: str = ""
    base_url: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0


@dataclass(slots=True)
class Settings:
    """Engine settings persisted between runs.

    ``enabled_tools`` follows an opt-out model: an empty map means the
    selection was never saved and every usable tool counts as enabled.
    A tool is considered configured when ``tool_configs`` holds a non-empty
    map for it.
    """

    default_provider: str = ""
    default_model: str = ""
    max_turns: int = DEFAULT_MAX_TURNS
    global_system_prompt: str = ""
    site_context_enabled: bool = True
    enabled_tools: dict[str, bool] = field(default_factory=dict)
    tool_configs: dict[str, dict[str, Any]] = field(default_factory=dict)
    providers: dict[str, ProviderSettings] = field(default_factory=dict)
    debug_logging: bool = False

    def provider(self, name: str) -> ProviderSettings:
        """Return settings for ``name``, or defaults when not configured."""

        return self.providers.get(name) or ProviderSettings()


class SecretVault:
    """Encrypts provider API keys with a Fernet key stored beside the settings file."""

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{_FERNET_PREFIX}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if prefix != _FERNET_PREFIX or not payload:
            LOGGER.warning("Unknown secret token prefix %s; ignoring stored key.", prefix or "<none>")
            return ""
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI and environment overrides.

        Args:
            overrides: Field values that take precedence over the stored file
                (typically parsed command line options). ``None`` values are
                ignored.

        Returns:
            The effective settings. A missing or unreadable file yields
            defaults rather than an error.
        """
        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            data["providers"] = self._load_providers(data.get("providers"))
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if payload.get("version") != _SETTINGS_VERSION:
                LOGGER.info(
                    "Settings file %s has version %s; expected %s",
                    self._path,
                    payload.get("version"),
                    _SETTINGS_VERSION,
                )

        if overrides:
            settings = _apply_overrides(settings, overrides, source="CLI")
        settings = self._apply_env_overrides(settings)
        LOGGER.debug(
            "Settings loaded from %s: provider=%s model=%s max_turns=%s",
            self._path,
            settings.default_provider or "<unset>",
            settings.default_model or "<unset>",
            settings.max_turns,
        )
        return settings

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        body = json.dumps(self._serialize(settings), indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s (%d provider(s))", self._path, len(settings.providers))
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        providers: Dict[str, Any] = {}
        for name, provider in data.get("providers", {}).items():
            entry = dict(provider)
            ciphertext = self._vault.encrypt(entry.pop("api_key", "") or "")
            if ciphertext:
                entry[_API_KEY_FIELD] = ciphertext
            providers[name] = entry
        data["providers"] = providers
        data["version"] = _SETTINGS_VERSION
        return data

    def _load_providers(self, payload: Any) -> dict[str, ProviderSettings]:
        if not isinstance(payload, Mapping):
            return {}
        allowed = {item.name for item in fields(ProviderSettings)}
        providers: dict[str, ProviderSettings] = {}
        for name, raw in payload.items():
            if not isinstance(raw, Mapping):
                continue
            entry = {key: value for key, value in raw.items() if key in allowed and key != "api_key"}
            try:
                api_key = self._vault.decrypt(raw.get(_API_KEY_FIELD))
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key for provider %s: %s", name, exc)
                api_key = ""
            try:
                providers[str(name)] = ProviderSettings(api_key=api_key, **entry)
            except TypeError as exc:
                LOGGER.warning("Provider settings for %s are invalid: %s", name, exc)
        return providers

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        if overrides:
            settings = _apply_overrides(settings, overrides, source="environment")

        providers = dict(settings.providers)
        for provider_name, env_name in _PROVIDER_KEY_ENV.items():
            api_key = os.environ.get(env_name)
            if api_key:
                providers[provider_name] = replace(settings.provider(provider_name), api_key=api_key)
        if providers != settings.providers:
            settings = replace(settings, providers=providers)
        return settings


def _apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    allowed = {item.name for item in fields(Settings)} - {"providers"}
    filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
    if filtered:
        LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
        settings = replace(settings, **filtered)
    return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
