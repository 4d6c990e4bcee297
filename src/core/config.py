"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

VENDOR_FILTER_MODES = ("lenient", "strict")


@dataclass(frozen=True)
class MatchingConfig:
    """Product matching settings.

    vendor_filter_mode:
    - "lenient": a vendor that matches no account is ignored as a filter
    - "strict": a vendor that matches no account yields no candidates
    """

    vendor_filter_mode: str = "lenient"
    date_window_days: int = 4
    match_on_ingest: bool = False

    def __post_init__(self) -> None:
        if self.vendor_filter_mode not in VENDOR_FILTER_MODES:
            raise ValueError(f"Unsupported vendor filter mode: {self.vendor_filter_mode}")
        if self.date_window_days < 0:
            raise ValueError("date_window_days must be >= 0")


@dataclass(frozen=True)
class QueueConfig:
    """Approval queue settings.

    A best match is only recorded when it reaches best_match_min_score.
    auto_match_min_score=None disables automatic resolution.
    """

    best_match_min_score: int = 30
    auto_match_min_score: Optional[int] = None
    page_size: int = 20
