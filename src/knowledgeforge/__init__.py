"""KnowledgeForge: roadmap progress tracking with XP and badges."""

__version__ = "0.4.0"
