"""Outcome of a single probe."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

# status_code recorded for network errors, timeouts and failed content checks
FAILED_STATUS_CODE = 0


def is_healthy_status_code(status_code: int) -> bool:
    return 200 <= status_code < 400


@dataclass(frozen=True)
class CheckResult:
    """One probe observation as stored in a site's history."""
    observed_at: datetime
    status_code: int
    duration_ms: int
    detail: Optional[str] = None  # failure category and message, None when healthy

    def __post_init__(self):
        if self.duration_ms < 0:
            raise ValueError(f"duration_ms must be >= 0, got {self.duration_ms}")

    @property
    def is_healthy(self) -> bool:
        return is_healthy_status_code(self.status_code)

    @classmethod
    def failure(cls, observed_at: datetime, duration_ms: int, detail: str) -> "CheckResult":
        return cls(
            observed_at=observed_at,
            status_code=FAILED_STATUS_CODE,
            duration_ms=max(0, duration_ms),
            detail=detail,
        )
