"""
Configuration management (SSOT).

This module defines ALL configuration for fiscalflow.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Nuvem Fiscal credentials are only read from config/env, never from callers
- Sync timing defaults reproduce the feed's documented polling cadence
  (5s wait on "processando", 2s between batches, pages of 50)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

NUVEM_FISCAL_AUTH_URL = "https://auth.nuvemfiscal.com.br/oauth/token"
NUVEM_FISCAL_API_URL = "https://api.nuvemfiscal.com.br"
NUVEM_FISCAL_SCOPES = "empresa distribuicao-nfe nfe nfse cte conta"


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class NuvemFiscalConfig:
    """Nuvem Fiscal API configuration.

    client_id/client_secret feed the client-credentials exchange. Both are
    required for any remote call; their absence is a configuration error
    raised by the token provider at call time.
    """

    client_id: str = ""
    client_secret: str = ""
    api_url: str = NUVEM_FISCAL_API_URL
    auth_url: str = NUVEM_FISCAL_AUTH_URL
    scopes: str = NUVEM_FISCAL_SCOPES
    # Request timeout (seconds)
    timeout_seconds: int = 30
    # Transport retries for idempotent GETs (429/5xx)
    max_retries: int = 3

    def has_credentials(self) -> bool:
        """Check if both client id and secret are set."""
        return bool(self.client_id and self.client_secret)


@dataclass
class SyncConfig:
    """Sync run settings."""

    # Documents requested per list call
    page_size: int = 50
    # Wait after a "processando" advance response (seconds)
    processing_delay_seconds: float = 5.0
    # Backoff strategy for processing waits: "fixed" or "exponential"
    backoff: str = "fixed"
    # Cap for exponential backoff (seconds)
    max_backoff_seconds: float = 60.0
    # Pause between fetch iterations (seconds)
    inter_batch_pause_seconds: float = 2.0
    # Batch-level feed failure ends the loop but the run still succeeds
    tolerate_batch_failure: bool = True
    # Hard wall-clock bound for one run (None = unbounded)
    deadline_seconds: float | None = None
    # Serialize runs per company with a lease row
    lock_runs: bool = True
    # Lease expiry so a crashed run cannot block the company forever
    lease_ttl_seconds: int = 900


@dataclass
class WebConfig:
    """Inbound HTTP settings (webhook + operator endpoints)."""

    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False


@dataclass
class Config:
    """Application configuration (SSOT)."""

    nuvem_fiscal: NuvemFiscalConfig = field(default_factory=NuvemFiscalConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    web: WebConfig = field(default_factory=WebConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.nuvem_fiscal.client_id:
            errors.append("nuvem_fiscal.client_id is required")
        if not self.nuvem_fiscal.client_secret:
            errors.append("nuvem_fiscal.client_secret is required")
        if not self.nuvem_fiscal.api_url:
            errors.append("nuvem_fiscal.api_url is required")

        if self.sync.page_size <= 0:
            errors.append("sync.page_size must be positive")
        if self.sync.processing_delay_seconds < 0:
            errors.append("sync.processing_delay_seconds must be >= 0")
        if self.sync.inter_batch_pause_seconds < 0:
            errors.append("sync.inter_batch_pause_seconds must be >= 0")
        if self.sync.backoff not in ("fixed", "exponential"):
            errors.append("sync.backoff must be 'fixed' or 'exponential'")
        if self.sync.deadline_seconds is not None and self.sync.deadline_seconds <= 0:
            errors.append("sync.deadline_seconds must be positive when set")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - NUVEM_FISCAL_CLIENT_ID
    - NUVEM_FISCAL_CLIENT_SECRET
    - NUVEM_FISCAL_API_URL
    - NUVEM_FISCAL_AUTH_URL
    - FISCALFLOW_STATE_DB
    - FISCALFLOW_TOLERATE_BATCH_FAILURE (true/false)
    - FISCALFLOW_SYNC_DEADLINE (seconds)
    """
    config_path = Path(config_path)
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Nuvem Fiscal
    nf_data = data.get("nuvem_fiscal", {})
    nuvem_fiscal = NuvemFiscalConfig(
        client_id=os.environ.get("NUVEM_FISCAL_CLIENT_ID", nf_data.get("client_id", "")),
        client_secret=os.environ.get(
            "NUVEM_FISCAL_CLIENT_SECRET", nf_data.get("client_secret", "")
        ),
        api_url=os.environ.get(
            "NUVEM_FISCAL_API_URL", nf_data.get("api_url", NUVEM_FISCAL_API_URL)
        ),
        auth_url=os.environ.get(
            "NUVEM_FISCAL_AUTH_URL", nf_data.get("auth_url", NUVEM_FISCAL_AUTH_URL)
        ),
        scopes=nf_data.get("scopes", NUVEM_FISCAL_SCOPES),
        timeout_seconds=int(nf_data.get("timeout_seconds", 30)),
        max_retries=int(nf_data.get("max_retries", 3)),
    )

    # Sync
    sync_data = data.get("sync", {})
    deadline = sync_data.get("deadline_seconds")
    deadline_env = os.environ.get("FISCALFLOW_SYNC_DEADLINE", "")
    if deadline_env:
        try:
            deadline = float(deadline_env)
        except ValueError:
            pass  # Keep file value

    sync = SyncConfig(
        page_size=int(sync_data.get("page_size", 50)),
        processing_delay_seconds=float(sync_data.get("processing_delay_seconds", 5.0)),
        backoff=sync_data.get("backoff", "fixed"),
        max_backoff_seconds=float(sync_data.get("max_backoff_seconds", 60.0)),
        inter_batch_pause_seconds=float(sync_data.get("inter_batch_pause_seconds", 2.0)),
        tolerate_batch_failure=_env_bool(
            "FISCALFLOW_TOLERATE_BATCH_FAILURE",
            sync_data.get("tolerate_batch_failure", True),
        ),
        deadline_seconds=float(deadline) if deadline is not None else None,
        lock_runs=sync_data.get("lock_runs", True),
        lease_ttl_seconds=int(sync_data.get("lease_ttl_seconds", 900)),
    )

    # Web
    web_data = data.get("web", {})
    web = WebConfig(
        host=web_data.get("host", "127.0.0.1"),
        port=int(web_data.get("port", 8080)),
        debug=web_data.get("debug", False),
    )

    state_db = os.environ.get("FISCALFLOW_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        nuvem_fiscal=nuvem_fiscal,
        sync=sync,
        web=web,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# fiscalflow configuration
#
# Credentials can also come from NUVEM_FISCAL_CLIENT_ID / NUVEM_FISCAL_CLIENT_SECRET.

nuvem_fiscal:
  client_id: "YOUR_CLIENT_ID"
  client_secret: "YOUR_CLIENT_SECRET"
  api_url: "https://api.nuvemfiscal.com.br"
  auth_url: "https://auth.nuvemfiscal.com.br/oauth/token"
  timeout_seconds: 30
  max_retries: 3                   # Transport retries for GET requests only

sync:
  page_size: 50                    # Documents per list call
  processing_delay_seconds: 5      # Wait when the feed answers "processando"
  backoff: "fixed"                 # fixed | exponential
  max_backoff_seconds: 60
  inter_batch_pause_seconds: 2     # Pause between fetch iterations
  tolerate_batch_failure: true     # Batch error ends the loop, run still succeeds
  deadline_seconds: null           # Hard bound for one run (null = none)
  lock_runs: true                  # One run per company at a time
  lease_ttl_seconds: 900

web:
  host: "127.0.0.1"
  port: 8080
  debug: false

# State database path
state_db_path: "data/state.db"
"""

    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
