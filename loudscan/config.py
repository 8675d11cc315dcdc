"""
loudscan Configuration - Per-request settings and process-wide scanner config.

Responsibilities:
- Convert user-facing values (signed threshold, 0-100 percent) into the
  normalized form the analyzer consumes
- Validate every value before anything is queued or spawned
- Load process-wide knobs from LOUDSCAN_* environment variables

Invariants:
- ScanSettings.threshold is always <= 0 (normalized via -abs())
- ScanSettings.strike_fraction is always within [0, 1]
- Invalid values raise ValidationError, never clamp silently
"""

import logging
import math
import numbers
import os
from dataclasses import dataclass
from typing import Mapping

from loudscan.errors import ValidationError


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_THRESHOLD = -2.0
DEFAULT_STRIKE_PERCENT = 20.0
DEFAULT_CHAIN_TIMEOUT = 15.0
DEFAULT_MAX_CANDIDATES = 10
MAX_THRESHOLD_MAGNITUDE = 32.0

DEFAULT_WORKERS = 2
MAX_WORKERS = 10
DEFAULT_QUEUE_CAPACITY = 256

_TRUE_VALUES = {"1", "true", "yes", "on"}


def normalize_threshold(threshold: float) -> float:
    """
    Fold a configured loudness threshold onto the negative LU axis.

    Momentary loudness values are negative-leaning, so -2 and 2 both mean
    "louder than -2 LU".
    """
    return -abs(float(threshold))


def percent_to_fraction(percent: float) -> float:
    """Convert a strike percentage (0-100) into a 0-1 fraction."""
    return float(percent) / 100.0


# =============================================================================
# ScanSettings - Per-Request Configuration
# =============================================================================


@dataclass(frozen=True)
class ScanSettings:
    """
    Immutable per-request scan configuration.

    Attributes:
        threshold: Normalized loudness threshold in LU (<= 0)
        strike_fraction: Minimum share of samples a single loud run must cover
        chain_timeout: Absolute timeout per chain invocation, in seconds
        max_candidates: Maximum number of media candidates per request
        analyze_partial: Analyze partial output of chains that failed with
            an I/O error instead of discarding it
    """
    threshold: float = DEFAULT_THRESHOLD
    strike_fraction: float = DEFAULT_STRIKE_PERCENT / 100.0
    chain_timeout: float = DEFAULT_CHAIN_TIMEOUT
    max_candidates: int = DEFAULT_MAX_CANDIDATES
    analyze_partial: bool = False

    def __post_init__(self):
        for name in ("threshold", "strike_fraction", "chain_timeout"):
            if not _is_number(getattr(self, name)):
                raise ValidationError(name, getattr(self, name), "must be a number")
        if not math.isfinite(self.threshold) or self.threshold > 0:
            raise ValidationError("threshold", self.threshold, "must be a finite value <= 0")
        if abs(self.threshold) > MAX_THRESHOLD_MAGNITUDE:
            raise ValidationError(
                "threshold", self.threshold, f"magnitude must not exceed {MAX_THRESHOLD_MAGNITUDE:g}"
            )
        if not 0.0 <= self.strike_fraction <= 1.0:
            raise ValidationError("strike_fraction", self.strike_fraction, "must be within [0, 1]")
        if not math.isfinite(self.chain_timeout) or self.chain_timeout <= 0:
            raise ValidationError("chain_timeout", self.chain_timeout, "must be a positive number of seconds")
        if isinstance(self.max_candidates, bool) or not isinstance(self.max_candidates, int):
            raise ValidationError("max_candidates", self.max_candidates, "must be an integer")
        if self.max_candidates < 1:
            raise ValidationError("max_candidates", self.max_candidates, "must be at least 1")

    @classmethod
    def from_user(
        cls,
        loudness_threshold: float = DEFAULT_THRESHOLD,
        strike_percent: float = DEFAULT_STRIKE_PERCENT,
        chain_timeout: float = DEFAULT_CHAIN_TIMEOUT,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
        analyze_partial: bool = False,
    ) -> "ScanSettings":
        """
        Build settings from user-facing values.

        Args:
            loudness_threshold: Threshold in LU, either sign
            strike_percent: Strike percentage in [0, 100]
            chain_timeout: Seconds per chain invocation
            max_candidates: Candidate limit per request
            analyze_partial: See ScanSettings.analyze_partial

        Raises:
            ValidationError: If any value is malformed or out of range
        """
        try:
            threshold = float(loudness_threshold)
            percent = float(strike_percent)
            timeout = float(chain_timeout)
        except (TypeError, ValueError) as e:
            raise ValidationError("settings", (loudness_threshold, strike_percent, chain_timeout), str(e)) from e
        if not 0.0 <= percent <= 100.0:
            raise ValidationError("strike_percent", strike_percent, "must be within [0, 100]")
        if not math.isfinite(threshold):
            raise ValidationError("threshold", loudness_threshold, "must be finite")
        return cls(
            threshold=normalize_threshold(threshold),
            strike_fraction=percent_to_fraction(percent),
            chain_timeout=timeout,
            max_candidates=max_candidates,
            analyze_partial=analyze_partial,
        )


# =============================================================================
# ScannerConfig - Process-Wide Configuration
# =============================================================================


@dataclass(frozen=True)
class ScannerConfig:
    """
    Process-wide scanner configuration.

    Attributes:
        worker_count: Number of worker loops pulling from the queue (1-10)
        queue_capacity: Maximum number of buffered, not yet started requests
        use_shared_pool: Run worker loops on a caller-supplied executor
        ffmpeg_path: ffmpeg executable
        qtfs_path: Optional QuickTime fast-start executable run before ffmpeg
        log_level: Logging level name used by the CLI
    """
    worker_count: int = DEFAULT_WORKERS
    queue_capacity: int = DEFAULT_QUEUE_CAPACITY
    use_shared_pool: bool = False
    ffmpeg_path: str = "ffmpeg"
    qtfs_path: str | None = None
    log_level: str = "WARNING"

    def __post_init__(self):
        if not 1 <= self.worker_count <= MAX_WORKERS:
            raise ValidationError("worker_count", self.worker_count, f"must be within [1, {MAX_WORKERS}]")
        if self.queue_capacity < 1:
            raise ValidationError("queue_capacity", self.queue_capacity, "must be at least 1")
        if not self.ffmpeg_path or not self.ffmpeg_path.strip():
            raise ValidationError("ffmpeg_path", self.ffmpeg_path, "must not be empty")
        if self.qtfs_path is not None and not self.qtfs_path.strip():
            raise ValidationError("qtfs_path", self.qtfs_path, "must not be blank")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValidationError("log_level", self.log_level, "not a logging level name")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ScannerConfig":
        """
        Load configuration from LOUDSCAN_* environment variables.

        Unset variables fall back to the dataclass defaults.

        Raises:
            ValidationError: If a variable holds a malformed value
        """
        env = os.environ if environ is None else environ
        return cls(
            worker_count=_env_int(env, "LOUDSCAN_WORKERS", DEFAULT_WORKERS),
            queue_capacity=_env_int(env, "LOUDSCAN_QUEUE_CAPACITY", DEFAULT_QUEUE_CAPACITY),
            use_shared_pool=env.get("LOUDSCAN_SHARED_POOL", "false").strip().lower() in _TRUE_VALUES,
            ffmpeg_path=env.get("LOUDSCAN_FFMPEG", "ffmpeg"),
            qtfs_path=env.get("LOUDSCAN_QTFS") or None,
            log_level=env.get("LOUDSCAN_LOG_LEVEL", "WARNING").upper(),
        )


def _is_number(value: object) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(name, raw, "must be an integer") from e
