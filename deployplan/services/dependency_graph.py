"""
Explicit deployment stage graph.

A consumer of a conditionally created dependency cannot rely on reference
tracking to order itself after that dependency: when the dependency is not
created there is nothing to reference, and when it is, the reference only
exists behind the condition. Every such edge is therefore declared here.
"""

from __future__ import annotations

import heapq
import logging
from typing import Dict, List, Tuple

from deployplan.models import DependencyGraph, DeploymentStage, ResolvedNames, ResolvedTopology
from deployplan.services.errors import CyclicDependency, UnknownStageDependency

logger = logging.getLogger(__name__)

PLATFORM_RG = "platform-rg"
PLATFORM = "platform"
LOGGING_RG = "logging-rg"
LOGGING = "logging"
FRONTEND_RG = "frontend-rg"
FRONTEND = "frontend"
BACKEND_RG = "backend-rg"
BACKEND = "backend"
RBAC_BACKEND = "rbac-backend"
RBAC_PLATFORM = "rbac-platform"


class DependencyGraphBuilder:
    def declare(self, topology: ResolvedTopology, names: ResolvedNames) -> List[DeploymentStage]:
        """Stages in declaration order, before sorting."""
        platform = topology.platform
        logging_ref = topology.logging
        stages: List[DeploymentStage] = []

        if platform.is_created:
            stages.append(DeploymentStage(
                id=PLATFORM_RG,
                resource_group_target=platform.resource_group,
                description="Create the AI platform resource group",
                resources=(platform.resource_group,),
            ))
            stages.append(DeploymentStage(
                id=PLATFORM,
                resource_group_target=platform.resource_group,
                depends_on=[PLATFORM_RG],
                description="Create the AI Foundry account and project",
                resources=tuple(r for r in (platform.name, platform.project) if r),
            ))

        if logging_ref.is_created:
            stages.append(DeploymentStage(
                id=LOGGING_RG,
                resource_group_target=logging_ref.resource_group,
                description="Create the logging resource group",
                resources=(logging_ref.resource_group,),
            ))
            stages.append(DeploymentStage(
                id=LOGGING,
                resource_group_target=logging_ref.resource_group,
                depends_on=[LOGGING_RG],
                description="Create the Log Analytics workspace",
                resources=(logging_ref.name,),
            ))

        # Edges into shared dependencies exist only when they are created here.
        needs_logging = [LOGGING] if logging_ref.is_created else []
        needs_platform = [PLATFORM] if platform.is_created else []

        stages.extend([
            DeploymentStage(
                id=FRONTEND_RG,
                resource_group_target=names.frontend_resource_group,
                description="Create the frontend resource group",
                resources=(names.frontend_resource_group,),
            ),
            DeploymentStage(
                id=FRONTEND,
                resource_group_target=names.frontend_resource_group,
                depends_on=[FRONTEND_RG] + needs_logging,
                description="Static website storage and frontend Application Insights",
                resources=(names.frontend_storage_account, names.frontend_app_insights),
            ),
            DeploymentStage(
                id=BACKEND_RG,
                resource_group_target=names.backend_resource_group,
                description="Create the backend resource group",
                resources=(names.backend_resource_group,),
            ),
            DeploymentStage(
                id=BACKEND,
                resource_group_target=names.backend_resource_group,
                depends_on=[BACKEND_RG] + needs_logging + needs_platform,
                description="Function App, plan, runtime storage and backend Application Insights",
                resources=(
                    names.backend_storage_account,
                    names.backend_app_service_plan,
                    names.backend_function_app,
                    names.backend_app_insights,
                ),
            ),
            DeploymentStage(
                id=RBAC_BACKEND,
                resource_group_target=names.backend_resource_group,
                depends_on=[BACKEND],
                description="Role assignments scoped to the backend resource group",
            ),
            DeploymentStage(
                id=RBAC_PLATFORM,
                resource_group_target=platform.resource_group,
                depends_on=[BACKEND] + needs_platform,
                description="Role assignments scoped to the AI platform resource group",
            ),
        ])
        return stages

    def build(self, topology: ResolvedTopology, names: ResolvedNames) -> DependencyGraph:
        graph = DependencyGraph(stages=tuple(sort_stages(self.declare(topology, names))))
        logger.info("Deployment stages: %s", " -> ".join(graph.ids()))
        return graph


def sort_stages(stages: List[DeploymentStage]) -> List[DeploymentStage]:
    """
    Kahn's algorithm; among stages ready at the same time, declaration order wins.

    Raises:
        UnknownStageDependency: a stage depends on an id that was never declared.
        CyclicDependency: the stages cannot be ordered.
    """
    index: Dict[str, int] = {s.id: i for i, s in enumerate(stages)}
    pending: Dict[str, int] = {}
    dependents: Dict[str, List[str]] = {s.id: [] for s in stages}

    for s in stages:
        for dep in s.depends_on:
            if dep not in index:
                raise UnknownStageDependency(s.id, dep)
            dependents[dep].append(s.id)
        pending[s.id] = len(s.depends_on)

    ready: List[Tuple[int, str]] = [(index[sid], sid) for sid, n in pending.items() if n == 0]
    heapq.heapify(ready)
    ordered: List[DeploymentStage] = []
    while ready:
        _, sid = heapq.heappop(ready)
        ordered.append(stages[index[sid]])
        for nxt in dependents[sid]:
            pending[nxt] -= 1
            if pending[nxt] == 0:
                heapq.heappush(ready, (index[nxt], nxt))

    if len(ordered) != len(stages):
        stuck = [s.id for s in stages if pending[s.id] > 0]
        raise CyclicDependency(stuck)
    return ordered
