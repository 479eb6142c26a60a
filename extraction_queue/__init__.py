"""
Extraction Queue

A job queue and worker engine for long-running extraction tasks: idempotent
enqueue, atomic claim with stale-claim recovery, and manual retry.
"""

__version__ = "1.0.0"
