"""
awt: concurrency-safe task lifecycle for agent git worktrees.
"""

__version__ = "0.1.0"
