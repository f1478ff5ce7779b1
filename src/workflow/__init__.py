"""Transition pipeline for moving entities through a state graph.

This package provides:
- A pipeline that runs one handler per ``handle(entity, context)`` call,
  with before/after hooks and a two-tier error policy
- Static handler and transition resolvers built through fluent builders
- Error kinds separating recoverable from non-recoverable failures
- State repositories, event emission, metrics and settings
"""
