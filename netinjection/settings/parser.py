"""YAML settings parser."""
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .schema import ProvisionSettings
from ..deploy.errors import SettingsError

DEFAULT_SETTINGS_FILE = "netinjection.yaml"


class SettingsParser:
    """Parser for YAML provisioning settings."""

    @staticmethod
    def load(file_path: Optional[str] = None) -> ProvisionSettings:
        """Load and validate a YAML settings file.

        With no path, `netinjection.yaml` in the working directory is used
        when present and the built-in defaults otherwise.

        Args:
            file_path: Path to the YAML settings file.

        Returns:
            ProvisionSettings: Validated settings object.

        Raises:
            FileNotFoundError: If an explicit settings file doesn't exist.
            SettingsError: If the settings are invalid.
            yaml.YAMLError: If the YAML is malformed.
        """
        if file_path is None:
            if not Path(DEFAULT_SETTINGS_FILE).exists():
                return ProvisionSettings()
            file_path = DEFAULT_SETTINGS_FILE

        with open(file_path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return SettingsParser.validate(data, source=str(file_path))

    @staticmethod
    def validate(data: Dict[str, Any], source: str = "<settings>") -> ProvisionSettings:
        if not isinstance(data, dict):
            raise SettingsError(f"{source}: top level must be a mapping")
        try:
            return ProvisionSettings.model_validate(data)
        except ValidationError as e:
            raise SettingsError(f"{source}: invalid settings", str(e))

    @staticmethod
    def apply_overrides(settings: ProvisionSettings, overrides: Dict[str, Any]) -> ProvisionSettings:
        """Return a copy of `settings` with non-None dotted-path overrides applied.

        Args:
            settings: Loaded settings.
            overrides: Mapping like {"network.primary_region": "eastus"}.

        Raises:
            KeyError: If an override path does not name a settings field.
            SettingsError: If the merged settings are invalid.
        """
        data = settings.model_dump()
        for field_path, value in overrides.items():
            if value is None:
                continue
            parts = field_path.split('.')
            current = data
            for part in parts[:-1]:
                if part not in current:
                    raise KeyError(f"Field path '{field_path}' is invalid at '{part}'")
                current = current[part]
            if parts[-1] not in current:
                raise KeyError(f"Field path '{field_path}' is invalid at '{parts[-1]}'")
            current[parts[-1]] = value
        return SettingsParser.validate(data, source="overrides")
