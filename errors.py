"""
Error taxonomy for the row processing pipeline.

Only ValidationError fails a whole batch. Every other error is caught at the
row level and written into that row's state.
"""


class PipelineError(Exception):
    """Base exception for pipeline errors."""
    pass


class ValidationError(PipelineError):
    """Caller input is malformed: no rows, no header mapping, no headers."""
    pass


class NormalizationError(PipelineError):
    """A single row could not be normalized."""
    pass


class CacheError(PipelineError):
    pass


class CacheQueryError(CacheError):
    pass


class CacheWriteError(CacheError):
    pass


class ScrapeError(PipelineError):
    pass


class PageFetchError(ScrapeError):
    """Transport-level failure fetching a single page (DNS, connect, timeout)."""
    pass


class SummarizeError(PipelineError):
    """Summarizer failed or returned malformed output."""
    pass


class IllegalTransitionError(RuntimeError):
    """A row stage was moved out of order."""
    pass
