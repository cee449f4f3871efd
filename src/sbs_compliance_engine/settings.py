"""Settings for the SBS compliance engine.

Configuration uses the SBS_ENGINE_ environment prefix and covers:
- Logging (level, JSON rendering)
- Evaluation concurrency
- Control-id prefix to category mapping
- An optional YAML catalog overriding the built-in benchmark catalog

Settings are constructed explicitly and passed down to the engine. Nothing in
the package reads them from module-level state.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CATEGORY_PREFIXES: dict[str, str] = {
    "AUTH": "Authentication",
    "ACS": "Access Controls",
    "CODE": "Code Security",
    "CPORTAL": "Customer Portals",
    "GOV": "Governance",
}


class Settings(BaseSettings):
    """Settings for the SBS compliance engine.

    Environment variable prefix: SBS_ENGINE_
    """

    service_name: str = "sbs-compliance-engine"

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(
        default="INFO",
        description="Minimum level emitted by the structured logger.",
    )
    log_json: bool = Field(
        default=False,
        description="Render log lines as JSON instead of the console format.",
    )

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    max_concurrency: int = Field(
        default=8,
        ge=1,
        description="Maximum number of controls evaluated concurrently in one run.",
    )

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    category_prefixes: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_PREFIXES),
        description="Mapping of control-id prefix (the middle segment of SBS-AUTH-001) "
        "to the category name used in reports. Unknown prefixes are reported as-is.",
    )
    catalog_path: Path | None = Field(
        default=None,
        description="Path to a YAML control catalog. The built-in benchmark catalog "
        "is used when unset.",
    )

    model_config = SettingsConfigDict(env_prefix="SBS_ENGINE_")
