# config.py
"""Runtime configuration for the relay."""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_PORT = 8000
ADMISSION_POLICIES = ("ever-registered", "live-worker")


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    admission_policy: str = "ever-registered"
    static_dir: Path = Path("public")
    log_level: str = "INFO"

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValueError(f"PORT must be between 1 and 65535, got {self.port}")
        if self.admission_policy not in ADMISSION_POLICIES:
            raise ValueError(
                f"Unknown admission policy {self.admission_policy!r}, expected one of {', '.join(ADMISSION_POLICIES)}"
            )

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from the environment; PORT is the only knob most deployments set."""
        port = os.getenv("PORT") or str(DEFAULT_PORT)
        try:
            port_number = int(port)
        except ValueError:
            raise ValueError(f"PORT must be an integer, got {port!r}") from None
        return cls(
            host=os.getenv("TASKRELAY_HOST", "0.0.0.0"),
            port=port_number,
            admission_policy=os.getenv("TASKRELAY_ADMISSION_POLICY", "ever-registered"),
            static_dir=Path(os.getenv("TASKRELAY_STATIC_DIR", "public")),
            log_level=os.getenv("TASKRELAY_LOG_LEVEL", "INFO").upper(),
        )
