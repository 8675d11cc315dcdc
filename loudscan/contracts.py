"""
loudscan Contracts - Data model shared by all components.

This module provides:
- ChainStage / ChainSpec: Frozen description of an external process chain
- ChainResult: Outcome of one successful chain invocation
- MediaCandidate / ScanRequest: What the inbound collaborator submits
- Classification: Loudness decision for one candidate
- CandidateReport / ScanOutcome: Terminal per-request result
- ResultSink: Abstract base class for outcome delivery

INVARIANTS:
- All records are frozen and immutable
- A ScanRequest never holds more than settings.max_candidates candidates
- A ScanOutcome carries at most one authoritative Classification
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Union

from loudscan.config import ScanSettings
from loudscan.errors import ValidationError


STREAMS = ("stdout", "stderr")

# Outcome statuses
FLAGGED = "flagged"
NOT_FLAGGED = "not_flagged"
FAILED = "failed"

# Candidate statuses
CANDIDATE_FLAGGED = "flagged"
CANDIDATE_CLEARED = "cleared"
CANDIDATE_FAILED = "failed"


# =============================================================================
# ChainSpec - Frozen Process Chain Description
# =============================================================================


@dataclass(frozen=True)
class ChainStage:
    """
    One external command in a chain.

    Attributes:
        argv: Executable followed by its fixed flags
        stream: Which output stream feeds the next stage ("stdout" or
            "stderr"); for the final stage, the analysis stream
    """
    argv: tuple[str, ...]
    stream: str = "stdout"

    def __post_init__(self):
        if not self.argv or not self.argv[0]:
            raise ValidationError("argv", self.argv, "must name an executable")
        if self.stream not in STREAMS:
            raise ValidationError("stream", self.stream, f"must be one of {STREAMS}")

    @property
    def executable(self) -> str:
        return self.argv[0]


@dataclass(frozen=True)
class ChainSpec:
    """
    Ordered chain of stages; stage i's stream feeds stage i+1's stdin.

    Rules:
        - At least one stage
        - Hashable, safe to share between threads
    """
    stages: tuple[ChainStage, ...]

    def __post_init__(self):
        if not self.stages:
            raise ValidationError("stages", self.stages, "a chain needs at least one stage")

    @classmethod
    def of(cls, *stages: ChainStage) -> "ChainSpec":
        return cls(stages=tuple(stages))

    @property
    def analysis_stream(self) -> str:
        return self.stages[-1].stream

    def describe(self) -> str:
        """Render the chain as a shell-like pipeline for logs."""
        return " | ".join(" ".join(stage.argv) for stage in self.stages)


@dataclass(frozen=True)
class ChainResult:
    """
    Captured output of a chain that completed successfully.

    Attributes:
        lines: Analysis lines retained by the reader
        returncodes: Exit status per stage (all zero)
        pids: Process id per stage
        elapsed: Seconds from spawn to the last stage exit
    """
    lines: tuple[str, ...]
    returncodes: tuple[int, ...]
    pids: tuple[int, ...]
    elapsed: float


# =============================================================================
# ScanRequest - Inbound Work Item
# =============================================================================


MediaSource = Union[bytes, bytearray, memoryview, str, os.PathLike, BinaryIO, Callable[[], BinaryIO]]


@dataclass(frozen=True)
class MediaCandidate:
    """
    One media item of a request.

    Attributes:
        name: Display name used in logs and reports
        source: Raw bytes, a filesystem path, an open binary stream, or a
            zero-argument callable returning a binary stream
    """
    name: str
    source: MediaSource = field(repr=False)

    def __post_init__(self):
        source = self.source
        if not (
            isinstance(source, (bytes, bytearray, memoryview, str, os.PathLike))
            or hasattr(source, "read")
            or callable(source)
        ):
            raise ValidationError("source", type(source).__name__, "not a supported media source")


@dataclass(frozen=True)
class ScanRequest:
    """
    A request to scan an ordered list of candidates.

    Attributes:
        request_id: Opaque identifier chosen by the collaborator
        candidates: Candidates in scan order
        settings: Per-request scan settings
        chain: Optional chain override; the worker default is used if None
    """
    request_id: str
    candidates: tuple[MediaCandidate, ...]
    settings: ScanSettings = field(default_factory=ScanSettings)
    chain: ChainSpec | None = None

    def __post_init__(self):
        if len(self.candidates) > self.settings.max_candidates:
            raise ValidationError(
                "candidates",
                len(self.candidates),
                f"at most {self.settings.max_candidates} candidates per request",
            )


def build_request(
    request_id: str,
    candidates: list[MediaCandidate],
    settings: ScanSettings | None = None,
    chain: ChainSpec | None = None,
) -> ScanRequest:
    """
    Build a ScanRequest, keeping only the first max_candidates candidates.

    Args:
        request_id: Opaque identifier
        candidates: Candidates in scan order
        settings: Per-request settings (defaults if None)
        chain: Optional chain override

    Returns:
        A valid ScanRequest.
    """
    settings = ScanSettings() if settings is None else settings
    kept = tuple(candidates[: settings.max_candidates])
    return ScanRequest(request_id=request_id, candidates=kept, settings=settings, chain=chain)


# =============================================================================
# Classification & Outcome
# =============================================================================


@dataclass(frozen=True)
class Classification:
    """Loudness decision for one candidate."""
    flagged: bool
    max_loud_fraction: float
    total_samples: int

    def to_dict(self) -> dict:
        return {
            "flagged": self.flagged,
            "max_loud_fraction": self.max_loud_fraction,
            "total_samples": self.total_samples,
        }


@dataclass(frozen=True)
class CandidateReport:
    """Trace of one candidate that was started."""
    name: str
    status: str
    classification: Classification | None = None
    error: dict | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status,
            "classification": None if self.classification is None else self.classification.to_dict(),
            "error": self.error,
        }


@dataclass(frozen=True)
class ScanOutcome:
    """
    Terminal result of one request.

    Attributes:
        request_id: Identifier of the request
        status: "flagged", "not_flagged" or "failed"
        classification: The authoritative classification, if any
        flagged_candidate: Name of the flagged candidate, if any
        threshold: Normalized threshold the request ran with
        strike_fraction: Strike fraction the request ran with
        candidates: Reports of the candidates that were started, in order
        errors: Structured error objects of failed candidates
        started_at: ISO-8601 timestamp when the worker picked the request up
        completed_at: ISO-8601 timestamp when the outcome was built
    """
    request_id: str
    status: str
    classification: Classification | None
    flagged_candidate: str | None
    threshold: float
    strike_fraction: float
    candidates: tuple[CandidateReport, ...]
    errors: tuple[dict, ...]
    started_at: str
    completed_at: str

    @property
    def flagged(self) -> bool:
        return self.status == FLAGGED

    def to_dict(self) -> dict:
        """Serialize to the scan_outcome schema document."""
        return {
            "request_id": self.request_id,
            "version": "v1",
            "status": self.status,
            "classification": None if self.classification is None else self.classification.to_dict(),
            "flagged_candidate": self.flagged_candidate,
            "threshold": self.threshold,
            "strike_fraction": self.strike_fraction,
            "candidates": [report.to_dict() for report in self.candidates],
            "errors": list(self.errors),
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


# =============================================================================
# ResultSink - Outcome Delivery
# =============================================================================


class ResultSink(ABC):
    """
    Receives exactly one ScanOutcome per processed request.

    Implementations decide how to present flagged, not flagged and failed
    outcomes to their users. deliver() is called from worker threads.
    """

    @abstractmethod
    def deliver(self, outcome: ScanOutcome) -> None:
        ...


class CollectingSink(ResultSink):
    """Keeps delivered outcomes in memory, in delivery order."""

    def __init__(self):
        self.outcomes: list[ScanOutcome] = []

    def deliver(self, outcome: ScanOutcome) -> None:
        # list.append is atomic under the GIL
        self.outcomes.append(outcome)
