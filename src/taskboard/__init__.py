"""Provide the public `taskboard` package exports."""

from __future__ import annotations

from .engine.engine import TaskEngine

__all__ = ["TaskEngine"]
