"""
loudscan Pipeline Worker - drive one ScanRequest to completion.

CANDIDATE LOOP (per request):

    for candidate in request.candidates (in order):
        open media → ProcessChain.run → analyze → Classification
        flagged      → deliver flagged outcome, stop
        cleared      → next candidate
        chain error  → log, record, next candidate

INVARIANTS:
    - Candidates run strictly sequentially (no fan-out within a request)
    - First flagged candidate wins; later candidates are never started
    - One candidate's failure never aborts the request
    - Exactly one ScanOutcome is delivered per processed request
"""

import logging
import time

from loudscan.chain import ProcessChain
from loudscan.contracts import (
    CANDIDATE_CLEARED,
    CANDIDATE_FAILED,
    CANDIDATE_FLAGGED,
    FAILED,
    FLAGGED,
    NOT_FLAGGED,
    CandidateReport,
    ChainSpec,
    Classification,
    MediaCandidate,
    ResultSink,
    ScanOutcome,
    ScanRequest,
)
from loudscan.errors import ProcessChainError, ProcessIOError, build_error, error_from_chain
from loudscan.loudness import analyze, is_sample_line
from loudscan.media import open_media
from loudscan.utils import now_iso


logger = logging.getLogger(__name__)


class PipelineWorker:
    """
    Runs requests through the chain and the loudness analyzer.

    Attributes:
        default_chain: Chain used when a request carries no override
        sink: Receives one ScanOutcome per processed request
    """

    def __init__(self, default_chain: ChainSpec, sink: ResultSink):
        self.default_chain = default_chain
        self.sink = sink

    def __call__(self, request: ScanRequest) -> ScanOutcome:
        return self.process(request)

    def process(self, request: ScanRequest) -> ScanOutcome:
        """
        Scan every candidate of a request until one is flagged.

        Args:
            request: The request to process

        Returns:
            The ScanOutcome that was delivered to the sink.
        """
        started_at = now_iso()
        settings = request.settings
        chain = ProcessChain(request.chain or self.default_chain)

        reports: list[CandidateReport] = []
        errors: list[dict] = []
        flagged: CandidateReport | None = None

        logger.debug("Scanning request %s (%d candidate(s))", request.request_id, len(request.candidates))
        for candidate in request.candidates:
            report = self._scan_candidate(chain, candidate, request)
            reports.append(report)
            if report.error is not None:
                errors.append(report.error)
            if report.status == CANDIDATE_FLAGGED:
                flagged = report
                break

        outcome = ScanOutcome(
            request_id=request.request_id,
            status=_outcome_status(reports, flagged),
            classification=_authoritative(reports, flagged),
            flagged_candidate=None if flagged is None else flagged.name,
            threshold=settings.threshold,
            strike_fraction=settings.strike_fraction,
            candidates=tuple(reports),
            errors=tuple(errors),
            started_at=started_at,
            completed_at=now_iso(),
        )
        if outcome.flagged:
            logger.info(
                "Request %s flagged: [%s] loud for %.1f%% of its length",
                request.request_id, outcome.flagged_candidate,
                outcome.classification.max_loud_fraction * 100,
            )
        self.sink.deliver(outcome)
        return outcome

    def _scan_candidate(
        self,
        chain: ProcessChain,
        candidate: MediaCandidate,
        request: ScanRequest,
    ) -> CandidateReport:
        settings = request.settings
        start = time.monotonic()
        try:
            with open_media(candidate.source) as media:
                result = chain.run(media, settings.chain_timeout, line_filter=is_sample_line)
        except ProcessChainError as e:
            logger.warning(
                "Candidate [%s] of request %s failed (%s): %s",
                candidate.name, request.request_id, e.code, e,
            )
            error = error_from_chain(e, candidate.name)
            if settings.analyze_partial and isinstance(e, ProcessIOError) and e.partial_lines:
                classification = analyze(e.partial_lines, settings.threshold, settings.strike_fraction, candidate.name)
                if classification.flagged:
                    return CandidateReport(candidate.name, CANDIDATE_FLAGGED, classification, error)
            return CandidateReport(candidate.name, CANDIDATE_FAILED, error=error)
        except OSError as e:
            logger.warning("Candidate [%s] of request %s unavailable: %s", candidate.name, request.request_id, e)
            error = build_error("MEDIA_UNAVAILABLE", str(e), candidate.name)
            return CandidateReport(candidate.name, CANDIDATE_FAILED, error=error)
        except Exception as e:
            # Stream factories are caller code and may raise anything
            logger.exception("Candidate [%s] of request %s could not be opened", candidate.name, request.request_id)
            error = build_error("MEDIA_UNAVAILABLE", f"{type(e).__name__}: {e}", candidate.name)
            return CandidateReport(candidate.name, CANDIDATE_FAILED, error=error)

        classification = analyze(result.lines, settings.threshold, settings.strike_fraction, candidate.name)
        logger.debug(
            "EBUR128 for [%s] completed in %.2f sec(s)", candidate.name, time.monotonic() - start,
        )
        status = CANDIDATE_FLAGGED if classification.flagged else CANDIDATE_CLEARED
        return CandidateReport(candidate.name, status, classification)


def _outcome_status(reports: list[CandidateReport], flagged: CandidateReport | None) -> str:
    if flagged is not None:
        return FLAGGED
    if any(report.status == CANDIDATE_CLEARED for report in reports):
        return NOT_FLAGGED
    return FAILED


def _authoritative(reports: list[CandidateReport], flagged: CandidateReport | None) -> Classification | None:
    """The flagged classification, else the loudest cleared one."""
    if flagged is not None:
        return flagged.classification
    cleared = [r.classification for r in reports if r.status == CANDIDATE_CLEARED]
    if not cleared:
        return None
    return max(cleared, key=lambda c: c.max_loud_fraction)
