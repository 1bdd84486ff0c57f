"""
Stack settings.

Settings are read, lowest precedence first, from:
- the defaults below
- a YAML file (e.g. moraine.yaml)
- MORAINE_* environment variables (MORAINE_LOCATION, MORAINE_SIGN_ASSETS, ...)
- explicit overrides (CLI options, Pulumi stack configuration)
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError

ENV_PREFIX = "MORAINE_"


class SettingsError(Exception):
    """Raised when settings cannot be loaded or are invalid."""
    pass


class StackSettings(BaseModel):
    """
    Configuration of the to-do application stack.

    Example:
        settings = StackSettings(
            location="westeurope",
            sql_admin_password="...",
            asset_root="../Front/build",
            sign_assets=True,
        )
    """

    project: str = Field(default="todo", description="Prefix of resource names")
    location: str = Field(default="westeurope", description="Azure location")
    tags: dict[str, str] = Field(default_factory=dict, description="Tags applied to every resource")

    sql_admin_login: str = Field(default="TodoAdmin", description="SQL server administrator login")
    sql_admin_password: SecretStr | None = Field(
        default=None, description="SQL server administrator password"
    )

    asset_root: Path = Field(default=Path("../Front/build"), description="Pre-built front-end")
    function_package: Path = Field(
        default=Path("../TodoFunctions/bin/Release/publish"), description="Published functions folder"
    )
    site_container: str = Field(default="$web", description="Static website container")
    index_document: str = Field(default="index.html")
    error_document: str = Field(default="index.html", description="Served for 404s (SPA routing)")

    endpoint_placeholder: str = Field(
        default="#{REACT_APP_TODO_API_ENDPOINT}", description="Token replaced by the API endpoint"
    )
    placeholder_patterns: list[str] = Field(
        default_factory=lambda: ["*main.*js"], description="Assets searched for the placeholder"
    )

    sign_assets: bool = Field(default=False, description="Mint signed read URLs for published assets")
    signing_duration: timedelta = Field(default=timedelta(hours=2), description="Signed URL lifetime")
    upload_workers: int = Field(default=1, ge=1, description="Parallel asset uploads")

    rule_prefix: str = Field(default="outbound", description="Prefix of firewall rule names")
    resolve_site_endpoint: bool = Field(
        default=True, description="Look up the site endpoint with the Azure CLI"
    )

    class Config:
        extra = "forbid"

    def resource_name(self, suffix: str) -> str:
        return f"{self.project}-{suffix}"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise SettingsError(f"Cannot read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file {path} must contain a mapping")
    return data


def _read_env(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field_name in StackSettings.model_fields:
        key = f"{ENV_PREFIX}{field_name.upper()}"
        if key not in environ:
            continue
        raw = environ[key]
        if field_name in ("tags", "placeholder_patterns"):
            # Structured values are given as YAML, e.g. MORAINE_TAGS="{team: web}"
            values[field_name] = yaml.safe_load(raw)
        else:
            values[field_name] = raw
    return values


def load_settings(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> StackSettings:
    """
    Load settings from a YAML file, the environment and overrides.

    Args:
        path: Optional YAML file
        overrides: Highest-precedence values; None entries are ignored
        environ: Environment mapping (defaults to os.environ)

    Raises:
        SettingsError: If a source is unreadable or a value is invalid
    """
    values: dict[str, Any] = {}
    if path is not None:
        values.update(_read_yaml(Path(path)))

    try:
        values.update(_read_env(os.environ if environ is None else environ))
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid structured value in environment: {e}") from e

    values.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        return StackSettings(**values)
    except ValidationError as e:
        raise SettingsError(f"Invalid settings: {e}") from e
