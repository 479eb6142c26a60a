"""
Queue services: enqueue, claim and administration.
"""

from extraction_queue.services.admin import JobAdmin
from extraction_queue.services.claim import ClaimProtocol
from extraction_queue.services.enqueue import EnqueueService, validate_enqueue

__all__ = [
    "EnqueueService",
    "validate_enqueue",
    "ClaimProtocol",
    "JobAdmin",
]
