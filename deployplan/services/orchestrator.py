"""
Composes naming, topology, stage graph, RBAC and naming validation into one
ResolvedPlan. Hard errors from every step that can run are collected and raised
together so a caller sees every configuration problem in a single pass.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from deployplan.models import DeploymentInputs, EndpointWarning, ResolvedPlan, ResolvedTopology
from deployplan.services.conventions import NamingConventions, get_conventions, normalize_region
from deployplan.services.dependency_graph import DependencyGraphBuilder
from deployplan.services.errors import DeploymentPlanError, InvalidInput, PlanResolutionError
from deployplan.services.naming import NameResolver, merge_names
from deployplan.services.rbac import RbacPlanner
from deployplan.services.topology import TopologyResolver
from deployplan.services.validator import NamingValidator

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    def __init__(
        self,
        conventions: Optional[NamingConventions] = None,
        rbac_planner: Optional[RbacPlanner] = None,
    ):
        self.conventions = conventions or get_conventions()
        self.names = NameResolver(self.conventions)
        self.topology = TopologyResolver(self.names)
        self.graph_builder = DependencyGraphBuilder()
        self.rbac = rbac_planner or RbacPlanner()
        self.validator = NamingValidator(self.conventions)

    def resolve(self, inputs: Union[DeploymentInputs, Mapping[str, Any]]) -> ResolvedPlan:
        """
        Resolve a complete plan or fail with every hard error found.

        Raises:
            PlanResolutionError: always wraps the failures, even a single one,
            and no partial plan is produced.
        """
        params = parse_inputs(inputs)
        errors: List[DeploymentPlanError] = []

        app_names: Dict[str, str] = {}
        try:
            app_names = self.names.resolve_all(
                params.application_name, params.environment_name, params.region
            )
        except DeploymentPlanError as e:
            errors.append(e)

        topology: Optional[ResolvedTopology] = None
        try:
            topology = self.topology.resolve(
                params.create_platform_group,
                params.create_logging_group,
                params.existing_platform(),
                params.existing_logging(),
                application_name=params.application_name,
                environment=params.environment_name,
                region=params.region,
            )
        except DeploymentPlanError as e:
            errors.append(e)

        if errors:
            failure = PlanResolutionError(errors)
            logger.warning("Plan resolution failed: %s", failure.codes())
            raise failure

        names = merge_names(app_names, topology)
        try:
            graph = self.graph_builder.build(topology, names)
        except DeploymentPlanError as e:
            raise PlanResolutionError([e]) from e

        # Never read from the process environment: assignment ids hash the scope
        subscription_id = params.subscription_id
        principal_id = params.workload_principal_id or names.backend_function_app
        role_assignments = self.rbac.plan(
            principal_id,
            topology,
            names.backend_resource_group,
            subscription_id=subscription_id,
            principal_deferred=params.workload_principal_id is None,
        )

        warnings = self.validator.validate_topology(topology)
        endpoint = ai_foundry_endpoint(params, topology)
        if endpoint is None:
            warnings.append(EndpointWarning(
                dependency="platform",
                message=(
                    f"No aiFoundryEndpoint was supplied for existing platform "
                    f"'{topology.platform.name}'. The backend needs the project endpoint "
                    f"(https://{{account}}.services.ai.azure.com/api/projects/{{project}})."
                ),
            ))
        for w in warnings:
            logger.warning(w.message)

        plan = ResolvedPlan(
            application_name=params.application_name.lower(),
            environment=params.environment_name.lower(),
            region=normalize_region(params.region),
            region_code=self.names.region_code(params.region),
            subscription_id=subscription_id,
            names=names,
            topology=topology,
            graph=graph,
            role_assignments=role_assignments,
            warnings=tuple(warnings),
            ai_foundry_endpoint=endpoint,
            ai_foundry_agent_id=params.ai_foundry_agent_id,
            ai_foundry_agent_name=params.ai_foundry_agent_name,
            tags=default_tags(params),
        )
        logger.info(
            "Resolved plan for %s/%s: %d stage(s), %d role assignment(s), %d warning(s)",
            plan.application_name,
            plan.environment,
            len(plan.stages),
            len(plan.role_assignments),
            len(plan.warnings),
        )
        return plan


def parse_inputs(inputs: Union[DeploymentInputs, Mapping[str, Any]]) -> DeploymentInputs:
    if isinstance(inputs, DeploymentInputs):
        return inputs
    try:
        return DeploymentInputs.model_validate(dict(inputs))
    except ValidationError as e:
        errors = [
            InvalidInput(".".join(str(p) for p in err["loc"]) or "inputs", err["msg"])
            for err in e.errors()
        ]
        raise PlanResolutionError(errors) from e


def ai_foundry_endpoint(params: DeploymentInputs, topology: ResolvedTopology) -> Optional[str]:
    if params.ai_foundry_endpoint:
        return params.ai_foundry_endpoint
    platform = topology.platform
    if platform.is_created:
        return f"https://{platform.name}.services.ai.azure.com/api/projects/{platform.project}"
    return None


def default_tags(params: DeploymentInputs) -> Dict[str, str]:
    tags = {
        "application": params.application_name.lower(),
        "environment": params.environment_name.lower(),
        "managed-by": "deployplan",
    }
    tags.update(params.tags)
    return tags
