"""
Runtime configuration, read from the environment.
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    environment: str = "dev"
    log_level: str = "INFO"
    port: int = 8080
    max_sweep_retries: int = 3

    @classmethod
    def from_env(cls, env=None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            environment=env.get("ENVIRONMENT", "dev"),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            port=int(env.get("PORT", 8080)),
            max_sweep_retries=int(env.get("DEALROOM_MAX_SWEEP_RETRIES", 3)),
        )
