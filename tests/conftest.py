"""
loudscan Test Configuration

Stand-in chain stages (small Python scripts run with the current
interpreter) and media fixtures.

The stand-in analyzer reads one momentary loudness value per stdin line and
prints an ffmpeg-style ebur128 record for it on stderr. The line `fail`
makes it exit with status 1.
"""

import os
import stat
import subprocess
import sys
from pathlib import Path

import numpy as np
import psutil
import pytest

from loudscan.contracts import ChainSpec, ChainStage


FAKE_EBUR128 = r'''
import sys
sys.stderr.write("Input #0, wav, from 'pipe:':\n")
for t, raw in enumerate(sys.stdin.buffer, 1):
    value = raw.decode().strip()
    if not value:
        continue
    if value == "fail":
        sys.stderr.flush()
        sys.exit(1)
    sys.stderr.write(
        "[Parsed_ebur128_0 @ 0x55d0c8] t: %.1f  TARGET:-23 LUFS  M: %s S: -20.0  I: -19.8 LUFS  LRA: 0.0 LU\n"
        % (t / 10, value)
    )
sys.stderr.write("[Parsed_ebur128_0 @ 0x55d0c8] Summary:\n")
'''

PASSTHROUGH = r'''
import shutil, sys
shutil.copyfileobj(sys.stdin.buffer, sys.stdout.buffer)
'''

EXIT_EARLY = r'''
import sys
sys.exit(3)
'''

SLOW_ANALYZER = r'''
import sys, time
sys.stdin.buffer.read()
time.sleep(0.5)
sys.stderr.write("[Parsed_ebur128_0 @ 0x1] t: 0.1  M: -1.0 S: -1.0\n")
'''


def run_cli(*args: str, env: dict | None = None) -> subprocess.CompletedProcess:
    """Run loudscan CLI as subprocess."""
    return subprocess.run(
        [sys.executable, "-m", "loudscan", *args],
        capture_output=True,
        text=True,
        env=env,
    )


def python_stage(code: str, stream: str = "stdout") -> ChainStage:
    """A chain stage running a Python snippet with the current interpreter."""
    return ChainStage(argv=(sys.executable, "-c", code), stream=stream)


def loudness_media(*values) -> bytes:
    """Media bytes for the stand-in analyzer, one value per line."""
    return "".join(f"{value}\n" for value in values).encode()


def assert_reaped(pids) -> None:
    """Fail if any of the given pids is still a child of this process."""
    children = {child.pid for child in psutil.Process().children(recursive=True)}
    leftover = children.intersection(pids)
    assert not leftover, f"stages still running: {sorted(leftover)}"


@pytest.fixture
def analyzer_chain() -> ChainSpec:
    """Single-stage chain: stand-in ebur128 analyzer reporting on stderr."""
    return ChainSpec.of(python_stage(FAKE_EBUR128, stream="stderr"))


@pytest.fixture
def two_stage_chain() -> ChainSpec:
    """passthrough | stand-in analyzer."""
    return ChainSpec.of(
        python_stage(PASSTHROUGH),
        python_stage(FAKE_EBUR128, stream="stderr"),
    )


@pytest.fixture
def fake_ffmpeg(tmp_path) -> Path:
    """
    Executable stand-in for ffmpeg usable via --ffmpeg.

    Ignores its arguments and behaves like the stand-in analyzer.
    """
    if os.name != "posix":
        pytest.skip("shebang scripts need a POSIX platform")
    script = tmp_path / "fake-ffmpeg"
    script.write_text(f"#!{sys.executable}\n{FAKE_EBUR128}")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


def create_test_wav(path: Path, amplitude: float, duration_sec: float = 3.0, sample_rate: int = 48000) -> None:
    """
    Write a stereo 1 kHz sine WAV file.

    A full-scale stereo sine measures close to 0 LUFS momentary; an
    amplitude of 0.01 lands around -40 LUFS.
    """
    import soundfile as sf

    t = np.arange(int(sample_rate * duration_sec)) / sample_rate
    tone = (amplitude * np.sin(2 * np.pi * 1000 * t)).astype(np.float32)
    sf.write(str(path), np.column_stack([tone, tone]), sample_rate, subtype="PCM_16")


@pytest.fixture
def loud_wav(tmp_path) -> Path:
    path = tmp_path / "loud.wav"
    create_test_wav(path, amplitude=0.99)
    return path


@pytest.fixture
def quiet_wav(tmp_path) -> Path:
    path = tmp_path / "quiet.wav"
    create_test_wav(path, amplitude=0.01)
    return path
