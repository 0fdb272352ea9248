from __future__ import annotations

from typing import List

from ...domain.errors import PlanNotFound
from ...domain.models import Plan
from ...domain.ports.persistence import PlanRepository


class PlanCatalog:
    """Read-only view over the plans offered for sale."""

    def __init__(self, plans: PlanRepository) -> None:
        self._plans = plans

    def list_active(self) -> List[Plan]:
        """Active plans, cheapest first; equal prices are ordered by id."""
        plans = [plan for plan in self._plans.list_plans(active_only=True) if plan.is_active]
        return sorted(plans, key=lambda plan: (plan.price, plan.id))

    def get_by_id(self, plan_id: str) -> Plan:
        plan = self._plans.get_plan(plan_id)
        if plan is None:
            raise PlanNotFound(plan_id)
        return plan
