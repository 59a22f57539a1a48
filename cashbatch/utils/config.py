"""Application configuration.

Pydantic-based settings loaded from environment variables (prefix
``CASHBATCH_``) and an optional ``.env`` file. Default directories come from
platformdirs so the tool behaves like a regular desktop application.

Environment Variables (examples):
- CASHBATCH_DATABASE_URL: Write database holding batches, payments and lookups
- CASHBATCH_ERP_DATABASE_URL: Read-only ERP database used for open invoices
- CASHBATCH_INVOICE_TIMEOUT_SECONDS: Per-customer open-invoice query timeout
- CASHBATCH_EXPORT_DIRECTORY: Where ERP import files are written
"""

from datetime import date
from pathlib import Path

from platformdirs import PlatformDirs
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

dirs = PlatformDirs("cashbatch", appauthor=False)

DEFAULT_PARAM_CANDIDATES = [
    "CustomerId",
    "CustomerNo",
    "Customer",
    "CustomerNumber",
    "cust_no",
    "custnum",
    "cust_id",
    "customer_id",
]


class Settings(BaseSettings):
    """CashBatch settings.

    Example:
        >>> settings = Settings(database_url="sqlite:///:memory:")
        >>> settings.search_cap
        28
    """

    model_config = SettingsConfigDict(
        env_prefix="CASHBATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    data_dir: Path = Field(
        default=Path(dirs.user_data_dir),
        description="Directory holding the local database and exports",
    )
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL of the write database (defaults to SQLite in data_dir)",
    )

    # ERP read side
    erp_database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL of the ERP read database",
    )
    open_invoices_procedure: str = Field(default="jbi_sp_cash_batch_open_invoices")
    customer_lookup_procedure: str = Field(default="jbi_sp_cash_batch_customer_lookup")
    invoice_param_candidates: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PARAM_CANDIDATES),
        description="Parameter names tried in order when calling the open-invoice procedure",
    )
    invoice_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Timeout for a single open-invoice query",
    )

    # Matching
    search_cap: int = Field(
        default=28,
        ge=2,
        le=200,
        description="Number of invoices (priority order) considered by pairwise/greedy/DFS",
    )
    dfs_max_invoices: int = Field(
        default=24,
        ge=0,
        le=40,
        description="Bounded DFS runs only when the capped invoice set is at most this size",
    )

    # Export defaults
    export_directory: Path | None = Field(default=None)
    export_fiscal_year: int = Field(default_factory=lambda: date.today().year)
    export_period: int = Field(default=1, ge=1, le=13)
    export_bank_number: str = Field(default="")
    export_gl_bank_account: str = Field(default="")
    export_ar_account: str = Field(default="")
    export_terms_account: str = Field(default="")
    export_allowed_account: str = Field(default="")
    company_id: str = Field(default="")

    # Logging
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    log_to_file: bool = Field(default=False)
    log_file_path: Path = Field(default=Path(dirs.user_log_dir) / "cashbatch.log")
    log_file_max_size_mb: int = Field(default=10, ge=1)
    log_file_backup_count: int = Field(default=5, ge=0)

    # Metrics
    metrics_enabled: bool = Field(default=False)
    metrics_port: int = Field(default=8000, ge=1, le=65535)

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    @property
    def resolved_database_url(self) -> str:
        """Write database URL, defaulting to a SQLite file in ``data_dir``."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'cashbatch.db'}"

    @property
    def resolved_export_directory(self) -> Path:
        """Export directory, defaulting to ``data_dir/exports``."""
        return self.export_directory or self.data_dir / "exports"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the process-wide settings instance."""
    global _settings

    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Re-read settings from the environment."""
    global _settings

    _settings = Settings()
    return _settings
