from .config import BatchConfig
from .models import BatchItem, BatchReport, ItemState, SubmissionResult, SubmissionStatus
from .pipeline import BatchRun, prepare_batch
from .submitter import BatchAbortedError, BatchSubmitter

__all__ = [
    "BatchAbortedError",
    "BatchConfig",
    "BatchItem",
    "BatchReport",
    "BatchRun",
    "BatchSubmitter",
    "ItemState",
    "SubmissionResult",
    "SubmissionStatus",
    "prepare_batch",
]
