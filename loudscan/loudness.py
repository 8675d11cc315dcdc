"""
loudscan Loudness Analysis - ebur128 parsing and strike-chunk classification.

Wire format (ffmpeg ebur128 filter, one record per 100 ms):

    [Parsed_ebur128_0 @ 0x55d0c8] t: 0.4  TARGET:-23 LUFS  M: -21.7 S:-120.7  I: -19.8 LUFS ...

Responsibilities:
    - Extract momentary loudness (the M: field) from tagged records
    - Run-length encode runs of samples above the threshold
    - Decide whether the longest loud run covers enough of the media

INVARIANTS:
    - All functions are pure; same input → same output
    - A malformed record is skipped, never fatal
    - sum(compute_strike_chunks(s, t)) == count(x in s where x > t)
    - No smoothing: a single quiet sample ends a run
"""

import logging
from typing import Iterable, Sequence

import numpy as np

from loudscan.contracts import Classification


logger = logging.getLogger(__name__)


# =============================================================================
# Constants (FROZEN)
# =============================================================================

RECORD_PREFIX = "[Parsed_ebur128_0"
MOMENTARY_MARKER = "M:"
SHORT_TERM_MARKER = "S:"


# =============================================================================
# Parsing
# =============================================================================


def is_sample_line(line: str) -> bool:
    """Return True if the line is a tagged ebur128 record."""
    return line.startswith(RECORD_PREFIX)


def _momentary_field(line: str) -> str | None:
    # Search after the "[Parsed_ebur128_0 @ 0x...]" tag
    tag_end = line.find("]") + 1
    start = line.find(MOMENTARY_MARKER, tag_end)
    if start < 0:
        return None
    start += len(MOMENTARY_MARKER)
    end = line.find(SHORT_TERM_MARKER, start)
    if end < 0:
        return None
    return line[start:end]


def parse_samples(lines: Iterable[str]) -> np.ndarray:
    """
    Parse momentary loudness samples from analyzer output.

    Args:
        lines: Analyzer output lines (with or without trailing newlines)

    Returns:
        1-D float64 array of LU values in emission order.

    Note:
        Tagged lines without an M: ... S: field (such as the summary header)
        are ignored. Lines whose M: value is unparsable or NaN are logged and
        skipped. -inf (digital silence) is kept as a sample.
    """
    values: list[float] = []
    for line in lines:
        if not is_sample_line(line):
            continue
        field = _momentary_field(line)
        if field is None:
            continue
        try:
            value = float(field)
        except ValueError:
            value = float("nan")
        if np.isnan(value):
            logger.warning("Bad loudness record, skipping: %r", line.rstrip())
            continue
        values.append(value)
    return np.asarray(values, dtype=np.float64)


# =============================================================================
# Segmentation
# =============================================================================


def compute_strike_chunks(samples: Sequence[float] | np.ndarray, threshold: float) -> list[int]:
    """
    Run-length encode maximal runs of samples above the threshold.

    Args:
        samples: LU values in emission order
        threshold: Samples strictly greater than this are loud

    Returns:
        Run lengths in order of appearance (empty if nothing is loud)
    """
    mask = np.asarray(samples, dtype=np.float64) > threshold
    if not mask.any():
        return []

    # Pad with quiet samples so every run has a rising and a falling edge
    padded = np.concatenate(([False], mask, [False])).astype(np.int8)
    edges = np.flatnonzero(np.diff(padded))
    starts, ends = edges[0::2], edges[1::2]
    return [int(length) for length in ends - starts]


# =============================================================================
# Classification
# =============================================================================


def classify(chunks: Sequence[int], total_samples: int, strike_fraction: float) -> Classification:
    """
    Decide whether the longest loud run covers enough of the media.

    Args:
        chunks: Strike chunk lengths
        total_samples: Number of samples the chunks were computed from
        strike_fraction: Minimum share (0-1) the longest run must cover

    Returns:
        Classification; never flagged when there are no samples.
    """
    if total_samples == 0:
        return Classification(flagged=False, max_loud_fraction=0.0, total_samples=0)

    max_loud_fraction = max((chunk / total_samples for chunk in chunks), default=0.0)
    return Classification(
        flagged=max_loud_fraction >= strike_fraction,
        max_loud_fraction=float(max_loud_fraction),
        total_samples=total_samples,
    )


def analyze(lines: Iterable[str], threshold: float, strike_fraction: float, name: str = "") -> Classification:
    """Parse, segment and classify analyzer output for one candidate."""
    samples = parse_samples(lines)
    chunks = compute_strike_chunks(samples, threshold)
    result = classify(chunks, len(samples), strike_fraction)

    logger.debug("LU [%s]: %d samples", name, len(samples))
    logger.debug("Strike chunks (LU > %s) [%s]: %s", threshold, name, chunks)
    logger.debug(
        "Is loud [%s]: %.4f >= %.4f = %s",
        name, result.max_loud_fraction, strike_fraction, result.flagged,
    )
    return result
