from __future__ import annotations
import pulumi
from deployplan.models import ResolvedPlan
from .azure_fabric import AzureFabric

def build_pulumi_program(plan: ResolvedPlan):
    location = plan.region

    def program():
        fabric = AzureFabric(location=location)
        fabric.apply_plan(plan)
        pulumi.export("resourceGroupName", plan.names.backend_resource_group)
        pulumi.export("stageOrder", [s.id for s in plan.stages])
        pulumi.export("fabricOutputs", fabric.outputs())

    return program
