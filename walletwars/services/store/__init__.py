"""Persistence boundary used by the tournament engine."""

from walletwars.services.store.base import RecordStore, apply_result_to_stats
from walletwars.services.store.sql import SqlRecordStore

__all__ = ["RecordStore", "SqlRecordStore", "apply_result_to_stats"]
