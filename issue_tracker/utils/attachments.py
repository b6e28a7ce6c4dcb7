from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from issue_tracker.core.config import settings

MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class SizeCheck:
    valid: bool
    warning: bool
    total_mb: float
    message: str = ""


def check_total_size(sizes: Iterable[int], warn_mb: int | None = None, max_mb: int | None = None) -> SizeCheck:
    """Caller-side attachment policy: warn at `warn_mb`, reject above `max_mb` (totals)."""
    warn_bytes = int(settings.ATTACHMENT_WARN_MB if warn_mb is None else warn_mb) * MB
    max_bytes = int(settings.ATTACHMENT_MAX_MB if max_mb is None else max_mb) * MB

    total = sum(int(s or 0) for s in sizes)
    total_mb = total / MB

    if total > max_bytes:
        return SizeCheck(
            valid=False,
            warning=False,
            total_mb=total_mb,
            message=f"Total file size ({total_mb:.2f} MB) exceeds maximum limit of {max_bytes // MB} MB",
        )
    if total >= warn_bytes:
        return SizeCheck(
            valid=True,
            warning=True,
            total_mb=total_mb,
            message=f"Large total file size detected ({total_mb:.2f} MB). Upload may take longer.",
        )
    return SizeCheck(valid=True, warning=False, total_mb=total_mb)


def format_file_size(num_bytes: int | None) -> str:
    n = int(num_bytes or 0)
    if n < 1024:
        return f"{n} B"
    if n < MB:
        return f"{n / 1024:.2f} KB"
    if n < 1024 * MB:
        return f"{n / MB:.2f} MB"
    return f"{n / (1024 * MB):.2f} GB"
