from .client import JobsClient

__all__ = [
    "JobsClient",
]
