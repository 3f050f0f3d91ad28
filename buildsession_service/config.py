import re

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional, Literal


class BuildSessionSettings(BaseSettings):
    """BuildSession service configuration.

    The sidecar talks to the app platform API at ``platform_base_url`` and
    keeps one agent session id per app in the configured identity store:
      memory: process-local, lost on restart
      file: JSON file at ``session_store_path``
      oracle: BUILDSESSION_IDENTITY table (freepdb or adb, see oracle_mode)
    """

    platform_base_url: str = "http://localhost:8080/api/v1"
    platform_token: Optional[str] = None
    request_timeout: float = 30.0
    stream_read_timeout: Optional[float] = None
    autosave_interval: float = 30.0

    session_store: Literal["memory", "file", "oracle"] = "memory"
    session_store_path: str = ".buildsession/sessions.json"
    session_key_namespace: str = "agent_session_id"

    oracle_mode: Literal["freepdb", "adb"] = "freepdb"
    oracle_user: str = "buildsession"
    oracle_password: str = ""
    oracle_host: str = "localhost"
    oracle_port: int = 1521
    oracle_service: str = "FREEPDB1"
    oracle_dsn: Optional[str] = None
    oracle_wallet_path: Optional[str] = None
    oracle_wallet_password: Optional[str] = None
    oracle_pool_min: int = 1
    oracle_pool_max: int = 4

    buildsession_service_port: int = 8110
    buildsession_service_token: Optional[str] = None
    auto_init: bool = False

    model_config = {"env_prefix": "", "case_sensitive": False}

    @field_validator("session_key_namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        if not re.match(r"^[A-Za-z0-9_.:-]+$", v):
            raise ValueError(f"Invalid session key namespace: {v!r}")
        return v

    @field_validator("autosave_interval")
    @classmethod
    def validate_autosave_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("autosave_interval must be positive")
        return v

    @property
    def uses_oracle(self) -> bool:
        return self.session_store == "oracle"

    @property
    def is_adb(self) -> bool:
        return self.oracle_mode == "adb"

    @property
    def uses_wallet(self) -> bool:
        """True if ADB mode with a wallet path (mTLS)."""
        return self.is_adb and bool(self.oracle_wallet_path)

    def get_dsn(self) -> str:
        """Return the DSN for the oracledb pool.

        ADB mode: full DSN descriptor when given.
        FreePDB mode: simple host:port/service format.
        """
        if self.is_adb and self.oracle_dsn:
            return self.oracle_dsn
        return f"{self.oracle_host}:{self.oracle_port}/{self.oracle_service}"

    def session_key(self, app_id: str) -> str:
        """Storage key holding the agent session id of one app."""
        return f"{self.session_key_namespace}:{app_id}"
