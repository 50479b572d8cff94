"""
Core package for handoff.
Lightweight package init to avoid import cycles.

Consumers should import submodules directly, e.g.:
  from handoff.core.plan import build_plan, WorkflowParameters
  from handoff.core.engine import Engine, ExecutionOutcome
  from handoff.core.trigger import Trigger
"""

__all__: list[str] = []
