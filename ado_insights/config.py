"""
Configuration management for ADO Insights.

Engine settings are resolved from:
1. Built-in defaults (EngineSettings)
2. .ado-insights.toml or pyproject.toml ([tool.ado-insights] table)
3. ADO_INSIGHTS_* environment variables
"""

import os
import tomllib
from pathlib import Path
from typing import Any, NamedTuple

from rich.console import Console
from rich.markup import escape

from ado_insights.metrics.base import AUTHOR_IDENTITIES

console = Console(stderr=True)

# project_root is the parent directory of ado_insights/
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Global configuration for SSL verification
# Default: True (verify SSL certificates)
# Can be set to False by CLI --insecure flag
VERIFY_SSL = True

DEFAULT_BASE_URL = "https://dev.azure.com"

# Cache TTLs per operation (seconds)
COMMITS_CACHE_TTL = 5 * 60
RANKING_CACHE_TTL = 5 * 60
CODEGRAPH_CACHE_TTL = 10 * 60
ANALYSIS_CACHE_TTL = 10 * 60
GENERAL_STATS_CACHE_TTL = 15 * 60


class EngineSettings(NamedTuple):
    """Tunable limits, delays and cache policy for the metrics engine."""

    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 30.0

    # Pagination
    page_size: int = 100
    work_item_batch_size: int = 200

    # Bounded sampling
    max_projects_for_commits: int = 20
    max_projects_for_stats: int = 10
    max_projects_for_coverage: int = 5
    max_repositories_for_pull_requests: int = 5
    max_repositories_for_activity: int = 20
    max_commits_for_detail: int = 100
    coverage_builds_to_list: int = 10
    coverage_builds_to_read: int = 5
    active_repository_days: int = 30
    ranking_limit: int = 10
    progress_interval: int = 20

    # Pauses between upstream calls (seconds)
    page_delay: float = 0.1
    project_delay: float = 0.2
    detail_delay: float = 0.15
    repository_delay: float = 0.1
    batch_delay: float = 0.1
    probe_delay: float = 0.05

    # Retry policy for throttled / unavailable upstream
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0

    # Result cache
    cache_capacity: int = 100
    commits_ttl: int = COMMITS_CACHE_TTL
    ranking_ttl: int = RANKING_CACHE_TTL
    codegraph_ttl: int = CODEGRAPH_CACHE_TTL
    analysis_ttl: int = ANALYSIS_CACHE_TTL
    general_stats_ttl: int = GENERAL_STATS_CACHE_TTL

    # Author identity: "name" (display name) or "name_email"
    author_identity: str = "name"

    def delays(self) -> dict[str, float]:
        """Return the pause length for each throttle kind."""
        return {
            "page": self.page_delay,
            "project": self.project_delay,
            "detail": self.detail_delay,
            "repository": self.repository_delay,
            "batch": self.batch_delay,
            "probe": self.probe_delay,
        }


# Environment variables mapped onto settings fields
_ENV_OVERRIDES = {
    "ADO_INSIGHTS_BASE_URL": "base_url",
    "ADO_INSIGHTS_CACHE_CAPACITY": "cache_capacity",
    "ADO_INSIGHTS_PAGE_DELAY": "page_delay",
    "ADO_INSIGHTS_AUTHOR_IDENTITY": "author_identity",
}


def load_config_file(config_path: Path) -> dict:
    """Load a TOML configuration file."""
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ValueError(f"Failed to load config from {config_path}: {e}") from e


def _coerce(field_name: str, value: Any) -> Any:
    """Convert a raw config value to the type of the settings field default."""
    default = EngineSettings._field_defaults[field_name]
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def get_file_overrides() -> dict[str, Any]:
    """
    Read engine overrides from configuration files.

    Priority:
    1. .ado-insights.toml (local config, highest priority)
    2. pyproject.toml (project-level config, fallback)

    Returns:
        Mapping of EngineSettings field names to values.
    """
    for filename in (".ado-insights.toml", "pyproject.toml"):
        config_path = PROJECT_ROOT / filename
        if not config_path.exists():
            continue
        section = load_config_file(config_path).get("tool", {}).get("ado-insights", {})
        if section:
            return {
                key.replace("-", "_"): value
                for key, value in section.items()
                if key.replace("-", "_") in EngineSettings._fields
            }
    return {}


def load_settings(**overrides: Any) -> EngineSettings:
    """
    Build EngineSettings from defaults, config files, environment and overrides.

    Explicit keyword overrides win over environment variables, which win over
    configuration files.
    """
    values: dict[str, Any] = {}
    for key, value in get_file_overrides().items():
        values[key] = _coerce(key, value)

    for env_name, field_name in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw:
            try:
                values[field_name] = _coerce(field_name, raw)
            except ValueError as e:
                console.print(
                    f"  [yellow]⚠️  Ignoring invalid {env_name}={escape(repr(raw))}: "
                    f"{escape(str(e))}[/yellow]"
                )

    values.update(overrides)

    unknown = set(values) - set(EngineSettings._fields)
    if unknown:
        raise ValueError(f"Unknown engine settings: {', '.join(sorted(unknown))}")

    settings = EngineSettings(**values)
    if settings.author_identity not in AUTHOR_IDENTITIES:
        raise ValueError(
            f"Invalid author_identity: {settings.author_identity}. "
            f"Expected one of: {', '.join(AUTHOR_IDENTITIES)}."
        )
    return settings


def set_verify_ssl(verify: bool) -> None:
    """
    Set the SSL verification setting globally.

    Args:
        verify: Whether to verify SSL certificates.
    """
    global VERIFY_SSL
    VERIFY_SSL = verify


def get_verify_ssl() -> bool:
    """
    Get the current SSL verification setting.

    Returns:
        Whether SSL verification is enabled.
    """
    return VERIFY_SSL


def get_default_token() -> str | None:
    """Return the access token configured in the AZURE_DEVOPS_PAT variable."""
    token = os.getenv("AZURE_DEVOPS_PAT")
    return token or None
