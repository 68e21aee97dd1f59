"""plogseq — sequencing of PLOG segment files for change-data-capture.

Tracks the append-only segment files written by a mining process, works
out which one is logically next (including multi-part sequences left
behind by producer restarts), and hands them to a downstream parser one
at a time.  Detects a dead producer by polling with a bounded budget.

Filename contract: <sequence>.plog.<10-digit timestamp>[suffix]
"""

__version__ = "0.1.0"
