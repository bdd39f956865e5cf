"""Runtime settings sourced from the environment.

Environment variables:

- ``CLOUD_POLICY_MAX_WORKERS``: concurrent (element, region) units (default 4)
- ``CLOUD_POLICY_LOG_LEVEL``: DEBUG|INFO|WARNING|ERROR (default WARNING)
- ``AWS_PROFILE`` / ``AWS_DEFAULT_REGION``: forwarded to :class:`boto3.session.Session`
"""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

DEFAULT_MAX_WORKERS = 4
MAX_WORKERS_LIMIT = 32


def _clamp_workers(value: int) -> int:
    return max(1, min(MAX_WORKERS_LIMIT, value))


@dataclass(frozen=True)
class Settings:
    max_workers: int = DEFAULT_MAX_WORKERS
    log_level: str = "WARNING"
    aws_profile: Optional[str] = None
    aws_default_region: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        raw_workers = env.get("CLOUD_POLICY_MAX_WORKERS", "")
        try:
            max_workers = _clamp_workers(int(raw_workers)) if raw_workers else DEFAULT_MAX_WORKERS
        except ValueError:
            raise ValueError(
                f"CLOUD_POLICY_MAX_WORKERS must be an integer, got '{raw_workers}'"
            ) from None
        return cls(
            max_workers=max_workers,
            log_level=env.get("CLOUD_POLICY_LOG_LEVEL", "WARNING").upper(),
            aws_profile=env.get("AWS_PROFILE") or None,
            aws_default_region=env.get("AWS_DEFAULT_REGION") or None,
        )

    def with_overrides(
        self,
        *,
        max_workers: Optional[int] = None,
        aws_profile: Optional[str] = None,
        log_level: Optional[str] = None,
    ) -> "Settings":
        """Return a copy with command line values applied over the environment."""

        settings = self
        if max_workers is not None:
            settings = replace(settings, max_workers=_clamp_workers(max_workers))
        if aws_profile:
            settings = replace(settings, aws_profile=aws_profile)
        if log_level:
            settings = replace(settings, log_level=log_level.upper())
        return settings


__all__ = ["DEFAULT_MAX_WORKERS", "MAX_WORKERS_LIMIT", "Settings"]
