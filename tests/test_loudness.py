"""
loudscan Loudness Analysis Tests

Covers ebur128 record parsing, strike-chunk run-length encoding and the
strike classification.
"""

import logging

import numpy as np
import pytest

from loudscan.loudness import (
    analyze,
    classify,
    compute_strike_chunks,
    is_sample_line,
    parse_samples,
)


def record(value: str, tag: str = "0x55d0c8") -> str:
    return f"[Parsed_ebur128_0 @ {tag}] t: 0.4  TARGET:-23 LUFS  M: {value} S:-120.7  I: -19.8 LUFS  LRA: 0.0 LU"


class TestParseSamples:
    """Test extraction of momentary loudness values."""

    def test_parses_tagged_records_in_order(self):
        lines = [record("-21.7"), record("-5.0"), record("3.2")]
        samples = parse_samples(lines)
        assert samples.dtype == np.float64
        assert samples.tolist() == [-21.7, -5.0, 3.2]

    def test_untagged_lines_ignored(self):
        lines = [
            "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'pipe:':",
            "  Stream #0:0: Audio: aac (LC), 44100 Hz, stereo",
            record("-10.0"),
            "    I:         -19.8 LUFS",
        ]
        assert parse_samples(lines).tolist() == [-10.0]

    def test_summary_header_ignored_silently(self, caplog):
        with caplog.at_level(logging.WARNING, logger="loudscan"):
            samples = parse_samples([record("-1.0"), "[Parsed_ebur128_0 @ 0x55d0c8] Summary:"])
        assert samples.tolist() == [-1.0]
        assert "Bad loudness record" not in caplog.text

    def test_unparsable_value_skipped_with_warning(self, caplog):
        lines = [record("-3.0"), record("garbage"), record("-4.0")]
        with caplog.at_level(logging.WARNING, logger="loudscan"):
            samples = parse_samples(lines)
        assert samples.tolist() == [-3.0, -4.0]
        assert "Bad loudness record" in caplog.text

    def test_nan_skipped(self):
        assert parse_samples([record("nan"), record("-1.5")]).tolist() == [-1.5]

    def test_negative_infinity_kept(self):
        samples = parse_samples([record("-inf"), record("-2.5")])
        assert len(samples) == 2
        assert np.isneginf(samples[0])

    def test_marker_inside_tag_not_matched(self):
        # The address part of the tag must not be mistaken for the M: field
        line = "[Parsed_ebur128_0 @ M:0x1 S:] t: 0.1  M: -7.5 S: -8.0"
        assert parse_samples([line]).tolist() == [-7.5]

    def test_trailing_newlines_tolerated(self):
        assert parse_samples([record("-6.0") + "\n"]).tolist() == [-6.0]

    def test_empty_input(self):
        assert parse_samples([]).size == 0

    def test_is_sample_line(self):
        assert is_sample_line(record("-1"))
        assert not is_sample_line("frame=  1 fps=0.0 q=-0.0 size=N/A")
        assert not is_sample_line(" [Parsed_ebur128_0 @ 0x1] t: 0.1 M: -1 S: -1")

    def test_parsing_is_pure(self):
        lines = [record("-1.0"), record("bad"), record("-9.0")]
        assert parse_samples(lines).tolist() == parse_samples(lines).tolist()


class TestStrikeChunks:
    """Test run-length encoding of loud runs."""

    def test_single_run(self):
        assert compute_strike_chunks([-5, -5, -1, -1, -1, -5], -2) == [3]

    def test_no_loud_samples(self):
        assert compute_strike_chunks([-5, -5, -5], -2) == []

    def test_runs_in_order_of_appearance(self):
        samples = [-1, -5, -1, -1, -5, -5, -1, -1, -1, -1]
        assert compute_strike_chunks(samples, -2) == [1, 2, 4]

    def test_run_at_both_edges(self):
        assert compute_strike_chunks([0, 0, -9, 0], -2) == [2, 1]

    def test_all_loud(self):
        assert compute_strike_chunks([-1] * 7, -2) == [7]

    def test_single_sample(self):
        assert compute_strike_chunks([-1.0], -2.0) == [1]
        assert compute_strike_chunks([-3.0], -2.0) == []

    def test_equal_to_threshold_is_not_loud(self):
        assert compute_strike_chunks([-2.0, -2.0], -2.0) == []

    def test_single_dip_ends_a_run(self):
        assert compute_strike_chunks([-1, -1, -3, -1, -1], -2) == [2, 2]

    def test_negative_infinity_is_quiet(self):
        assert compute_strike_chunks([float("-inf"), -1.0], -2.0) == [1]

    def test_empty(self):
        assert compute_strike_chunks([], -2.0) == []

    def test_numpy_input(self):
        assert compute_strike_chunks(np.array([-1.0, -1.0, -4.0]), -2.0) == [2]

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_sum_equals_loud_count(self, seed):
        rng = np.random.default_rng(seed)
        samples = rng.uniform(-12.0, 4.0, size=500)
        for threshold in (-8.0, -2.0, 0.0):
            chunks = compute_strike_chunks(samples, threshold)
            assert sum(chunks) == int(np.count_nonzero(samples > threshold))
            assert all(chunk > 0 for chunk in chunks)


class TestClassify:
    """Test the strike classification."""

    def test_longest_run_over_strike_fraction_flags(self):
        result = classify([3], 6, 0.2)
        assert result.flagged is True
        assert result.max_loud_fraction == 0.5
        assert result.total_samples == 6

    @pytest.mark.parametrize("samples, threshold, strike, chunks, fraction, flagged", [
        ([-5, -5, -1, -1, -1, -5], -2, 0.2, [3], 0.5, True),
        ([-5, -5, -5], -2, 0.2, [], 0.0, False),
    ])
    def test_samples_to_classification(self, samples, threshold, strike, chunks, fraction, flagged):
        assert compute_strike_chunks(samples, threshold) == chunks
        result = classify(chunks, len(samples), strike)
        assert result.total_samples == len(samples)
        assert result.max_loud_fraction == fraction
        assert result.flagged is flagged

    def test_no_chunks_not_flagged(self):
        result = classify([], 3, 0.2)
        assert result.flagged is False
        assert result.max_loud_fraction == 0.0

    def test_zero_samples_never_flagged(self):
        result = classify([], 0, 0.0)
        assert result.flagged is False
        assert result.total_samples == 0

    def test_fraction_equal_to_strike_flags(self):
        assert classify([1, 2], 10, 0.2).flagged is True

    def test_runs_are_not_summed(self):
        # Three runs of 1 in 10 samples: 30% loud overall, longest run 10%
        result = classify([1, 1, 1], 10, 0.2)
        assert result.flagged is False
        assert result.max_loud_fraction == pytest.approx(0.1)


class TestAnalyze:
    """Test the parse → segment → classify composition."""

    def test_loud_media_flagged(self):
        values = ["-5", "-5", "-1", "-1", "-1", "-5"]
        result = analyze([record(v) for v in values], threshold=-2.0, strike_fraction=0.2, name="clip")
        assert result.flagged is True
        assert result.max_loud_fraction == 0.5
        assert result.total_samples == 6

    def test_quiet_media_cleared(self):
        result = analyze([record("-5")] * 3, threshold=-2.0, strike_fraction=0.2)
        assert result.flagged is False

    def test_no_records(self):
        result = analyze(["no loudness here"], threshold=-2.0, strike_fraction=0.2)
        assert result.flagged is False
        assert result.total_samples == 0
