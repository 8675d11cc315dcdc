"""
loudscan Contract Tests

Chain descriptions, request construction and outcome serialization.
"""

import io
import sys
from pathlib import Path

import pytest

from loudscan.config import ScanSettings
from loudscan.contracts import (
    CandidateReport,
    ChainSpec,
    ChainStage,
    Classification,
    MediaCandidate,
    ScanOutcome,
    ScanRequest,
    build_request,
)
from loudscan.errors import ValidationError, build_error
from loudscan.media import candidate_from_bytes

sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))
from validate_schema import load_schema, validate_document


class TestChainSpec:
    """Test frozen chain descriptions."""

    def test_describe(self):
        spec = ChainSpec.of(
            ChainStage(argv=("qt-faststart", "-q")),
            ChainStage(argv=("ffmpeg", "-i", "-"), stream="stderr"),
        )
        assert spec.describe() == "qt-faststart -q | ffmpeg -i -"
        assert spec.analysis_stream == "stderr"
        assert spec.stages[0].executable == "qt-faststart"

    def test_empty_chain_rejected(self):
        with pytest.raises(ValidationError):
            ChainSpec.of()

    def test_empty_argv_rejected(self):
        with pytest.raises(ValidationError):
            ChainStage(argv=())

    def test_unknown_stream_rejected(self):
        with pytest.raises(ValidationError):
            ChainStage(argv=("ffmpeg",), stream="stdin")

    def test_hashable(self):
        spec = ChainSpec.of(ChainStage(argv=("ffmpeg",)))
        assert {spec: 1}[ChainSpec.of(ChainStage(argv=("ffmpeg",)))] == 1


class TestRequests:
    """Test request construction."""

    def test_build_request_truncates(self):
        candidates = [candidate_from_bytes(f"c{i}", b"") for i in range(5)]
        request = build_request("r", candidates, ScanSettings(max_candidates=3))
        assert [c.name for c in request.candidates] == ["c0", "c1", "c2"]

    def test_build_request_default_settings(self):
        request = build_request("r", [candidate_from_bytes("a", b"x")])
        assert request.settings == ScanSettings()
        assert request.chain is None

    def test_too_many_candidates_rejected(self):
        candidates = tuple(candidate_from_bytes(f"c{i}", b"") for i in range(3))
        with pytest.raises(ValidationError):
            ScanRequest("r", candidates, ScanSettings(max_candidates=2))

    @pytest.mark.parametrize("source", [b"raw", "clip.mp4", Path("clip.mp4"), io.BytesIO(b""), lambda: io.BytesIO()])
    def test_supported_sources(self, source):
        MediaCandidate("clip", source)

    @pytest.mark.parametrize("source", [42, None, ["a"]])
    def test_unsupported_source_rejected(self, source):
        with pytest.raises(ValidationError):
            MediaCandidate("clip", source)


class TestOutcomeDocument:
    """Test ScanOutcome serialization against the outcome schema."""

    @pytest.fixture
    def schema(self):
        return load_schema("scan_outcome")

    def make_outcome(self, **overrides) -> ScanOutcome:
        classification = Classification(flagged=True, max_loud_fraction=0.5, total_samples=6)
        error = build_error("CHAIN_EXIT", "stage exited 1", "a.mp4", {"returncodes": [1], "partial_lines": 0})
        fields = dict(
            request_id="req-1",
            status="flagged",
            classification=classification,
            flagged_candidate="b.mp4",
            threshold=-2.0,
            strike_fraction=0.2,
            candidates=(
                CandidateReport("a.mp4", "failed", error=error),
                CandidateReport("b.mp4", "flagged", classification),
            ),
            errors=(error,),
            started_at="2026-10-19T12:00:00+00:00",
            completed_at="2026-10-19T12:00:01+00:00",
        )
        fields.update(overrides)
        return ScanOutcome(**fields)

    def test_flagged_outcome_valid(self, schema):
        document = self.make_outcome().to_dict()
        assert validate_document(document, schema) == []
        assert document["version"] == "v1"
        assert document["candidates"][1]["classification"]["max_loud_fraction"] == 0.5

    def test_failed_outcome_valid(self, schema):
        outcome = self.make_outcome(status="failed", classification=None, flagged_candidate=None, candidates=())
        assert not outcome.flagged
        assert validate_document(outcome.to_dict(), schema) == []

    def test_unknown_status_invalid(self, schema):
        document = self.make_outcome(status="maybe").to_dict()
        assert validate_document(document, schema)

    def test_positive_threshold_invalid(self, schema):
        document = self.make_outcome().to_dict()
        document["threshold"] = 2.0
        assert validate_document(document, schema)


class TestSchemaLoading:
    def test_schema_loads(self):
        schema = load_schema("scan_outcome")
        assert schema["title"] == "loudscan v1 Scan Outcome"
        assert "request_id" in schema["required"]

    def test_invalid_schema_name_raises(self):
        with pytest.raises(ValueError, match="Unknown schema"):
            load_schema("status")
