"""Core HR module — the directory's Employee model and the engine's read/activation side."""

from hrops.core_hr.models import Employee

__all__ = ["Employee"]
