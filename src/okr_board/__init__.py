"""Provide the public `okr_board` package exports."""

from __future__ import annotations

from .config import BoardSettings
from .task_engine.engine import TaskEngine

__all__ = ["BoardSettings", "TaskEngine"]
