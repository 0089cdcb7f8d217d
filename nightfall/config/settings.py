"""Runtime settings for executors, read from NIGHTFALL_* environment variables."""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "NIGHTFALL_"


class Settings(BaseModel):
    """Executor settings.

    Attributes:
        store_path: SQLite database holding game records and actions
        flow_config: Optional flow configuration file
        archive_dir: Where finished games are archived (disabled when unset)
        lease_seconds: Override for the claim lease length
        log_level: Root log level for the CLI
        executor_id: Name used in lease tokens, for log correlation
    """

    store_path: Path = Field(default=Path("nightfall.db"))
    flow_config: Optional[Path] = Field(default=None)
    archive_dir: Optional[Path] = Field(default=None)
    lease_seconds: Optional[int] = Field(default=None, gt=0)
    log_level: str = Field(default="INFO")
    executor_id: Optional[str] = Field(default=None)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        data: dict[str, str] = {}
        for name in cls.model_fields:
            value = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if value:
                data[name] = value
        return cls(**data)
