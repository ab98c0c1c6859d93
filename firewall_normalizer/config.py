"""Runtime settings for the normalizer.

Values come from the environment and are overridden by command-line options.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    # Attempts per DNS query before the failure is treated as fatal.
    dns_retries: int = 2
    nameservers: List[str] = field(default_factory=list)
    # Off by default: every occurrence of a name is resolved again.
    cache_dns: bool = False
    verify_networks: bool = True
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        settings = cls()
        if env.get("FWNORM_DNS_RETRIES"):
            settings.dns_retries = int(env["FWNORM_DNS_RETRIES"])
        if env.get("FWNORM_NAMESERVERS"):
            settings.nameservers = [item.strip() for item in env["FWNORM_NAMESERVERS"].split(",") if item.strip()]
        if env.get("FWNORM_CACHE_DNS"):
            settings.cache_dns = env["FWNORM_CACHE_DNS"].strip().lower() in _TRUE_VALUES
        if env.get("FWNORM_LOG_LEVEL"):
            settings.log_level = env["FWNORM_LOG_LEVEL"].strip().upper()
        return settings
