"""
loudscan External Tools - Default chain construction and tool checks.

Responsibilities:
- Build the default ebur128 analysis chain (optionally behind QuickTime
  fast-start)
- Probe external executables for a version line

Forbidden:
- No scanning logic
"""

import logging
import subprocess
from dataclasses import dataclass

from loudscan.config import ScannerConfig
from loudscan.contracts import ChainSpec, ChainStage


logger = logging.getLogger(__name__)

# ffmpeg reads media from stdin and prints one ebur128 record per 100 ms to stderr
FFMPEG_EBUR128_FLAGS = ("-hide_banner", "-nostats", "-i", "-", "-af", "ebur128", "-f", "null", "-")
# qt-faststart in quiet mode: stdin → stdout with the moov atom moved up front
QTFS_FLAGS = ("-q",)

VERSION_TIMEOUT = 10.0


def ebur128_stage(ffmpeg_path: str = "ffmpeg") -> ChainStage:
    """The ffmpeg analysis stage; its stderr is the analysis stream."""
    return ChainStage(argv=(ffmpeg_path, *FFMPEG_EBUR128_FLAGS), stream="stderr")


def qtfs_stage(qtfs_path: str) -> ChainStage:
    """The QuickTime fast-start stage; its stdout feeds ffmpeg."""
    return ChainStage(argv=(qtfs_path, *QTFS_FLAGS), stream="stdout")


def default_chain(config: ScannerConfig | None = None) -> ChainSpec:
    """
    Build the default analysis chain for a scanner configuration.

    Returns:
        `qtfs -q | ffmpeg ... ebur128` when a qtfs path is configured,
        otherwise the ffmpeg stage alone.
    """
    config = ScannerConfig() if config is None else config
    stages = [ebur128_stage(config.ffmpeg_path)]
    if config.qtfs_path is not None:
        stages.insert(0, qtfs_stage(config.qtfs_path))
    return ChainSpec(stages=tuple(stages))


# =============================================================================
# Tool Checks
# =============================================================================


@dataclass(frozen=True)
class ToolStatus:
    """Result of probing one executable."""
    name: str
    path: str
    ok: bool
    version: str | None = None
    error: str | None = None


def probe_tool(name: str, path: str, flag: str = "-version") -> ToolStatus:
    """
    Run `<path> <flag>` and report the first non-empty output line.

    A missing executable, a non-zero exit, a timeout or empty output all
    count as unusable.
    """
    try:
        proc = subprocess.run(
            [path, flag],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=VERSION_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Unable to validate %s at path [%s]: %s", name, path, e)
        return ToolStatus(name=name, path=path, ok=False, error=str(e))

    output = (proc.stdout or proc.stderr).strip()
    version = output.splitlines()[0].strip() if output else ""
    if proc.returncode != 0 or not version:
        error = f"exit status {proc.returncode}" if proc.returncode != 0 else "no version output"
        logger.warning("Unable to validate %s at path [%s]: %s", name, path, error)
        return ToolStatus(name=name, path=path, ok=False, error=error)

    logger.info("%s version: %s", name, version)
    return ToolStatus(name=name, path=path, ok=True, version=version)


def check_tools(config: ScannerConfig) -> list[ToolStatus]:
    """Probe every executable the configured default chain needs."""
    statuses = [probe_tool("ffmpeg", config.ffmpeg_path)]
    if config.qtfs_path is not None:
        statuses.append(probe_tool("qtfs", config.qtfs_path, flag="-v"))
    return statuses
