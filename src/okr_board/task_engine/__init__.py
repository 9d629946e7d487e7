"""Ordering and dependency-consistency engine for the OKR execution board.

This package provides the task model, the file-backed store, the three rule
engines (priority ordering, status transitions, dependency graph) and the
:class:`~okr_board.task_engine.engine.TaskEngine` facade that ties them to the
store.
"""
