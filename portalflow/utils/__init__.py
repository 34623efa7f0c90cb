from .retry import compute_backoff

__all__ = ["compute_backoff"]
