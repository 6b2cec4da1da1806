"""Domain services.

Services implement domain logic that doesn't belong to a single node type.
"""

from dfconnect.domain.services.plan_builder import PlanBuilder, PlanIdSource

__all__ = [
    "PlanBuilder",
    "PlanIdSource",
]
