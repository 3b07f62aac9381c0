"""Exceptions raised by knowledgeforge.

Most engine failures are reported as absent / ``False`` results instead of
exceptions; these cover the few cases where the caller must be told.
"""

from __future__ import annotations


class KnowledgeForgeError(Exception):
    """Base class for knowledgeforge errors."""


class RoadmapShapeError(KnowledgeForgeError, ValueError):
    """Generated roadmap content is not a non-empty list of phases."""


class StateWriteError(KnowledgeForgeError, OSError):
    """The state file for a new project could not be written."""
