"""
loudscan - Bounded Loud-Media Scanning Pipeline

Pipes candidate media through external analysis tools (ffmpeg ebur128 by
default) and flags media whose loudness stays above a threshold for a large
enough share of its length.

Components (leaves first):
    - loudness: parse ebur128 output, strike chunks, classification
    - chain:    chained subprocess orchestration with timeout and teardown
    - worker:   per-request orchestration, first flagged candidate wins
    - ingest:   bounded, lossy-under-overload queue feeding a worker pool

Invariants:
    - Every spawned process is killed and reaped before a chain call returns
    - One terminal ScanOutcome per accepted request
    - Candidates of one request run strictly in order
"""

__version__ = "1.0.0"
