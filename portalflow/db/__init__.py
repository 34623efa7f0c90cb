from .models import AttemptRow, RunRow
from .run_history_db import SQLModelRunHistoryStore

__all__ = [
    "RunRow",
    "AttemptRow",
    "SQLModelRunHistoryStore",
]
