"""
Created/Existing decision for the shared dependencies.

The platform (AI Foundry) and logging (Log Analytics) dependencies are decided
once, here, from the caller's flags. Everything downstream consumes the
resolved ResourceRef and never looks at the flags again.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from deployplan.models import ComponentSpec, CreatedRef, ExistingRef, ResolvedTopology
from deployplan.services.conventions import ComponentKind, ResourceType
from deployplan.services.errors import DeploymentPlanError, MissingExistingReference, raise_if_any
from deployplan.services.naming import NameResolver

logger = logging.getLogger(__name__)

# Resource types named for each shared dependency when it is created
SHARED_RESOURCE_TYPES = {
    ComponentKind.PLATFORM: ResourceType.AI_SERVICES,
    ComponentKind.LOGGING: ResourceType.LOG_ANALYTICS,
}


class TopologyResolver:
    def __init__(self, name_resolver: Optional[NameResolver] = None):
        self.names = name_resolver or NameResolver()

    def resolve(
        self,
        create_platform: bool,
        create_logging: bool,
        existing_platform: Optional[ExistingRef] = None,
        existing_logging: Optional[ExistingRef] = None,
        *,
        application_name: str,
        environment: str,
        region: str,
    ) -> ResolvedTopology:
        """
        Decide both dependencies independently; failures from both are reported together.

        Raises:
            MissingExistingReference: a flag is false and its reference is incomplete.
            NameConstraintViolation / InvalidRegion: a created name cannot be composed.
            PlanResolutionError: more than one of the above.
        """
        errors: List[DeploymentPlanError] = []
        refs = {}
        decisions = (
            (ComponentKind.PLATFORM, create_platform, existing_platform),
            (ComponentKind.LOGGING, create_logging, existing_logging),
        )
        for kind, create, existing in decisions:
            try:
                refs[kind] = self.resolve_dependency(
                    kind,
                    create,
                    existing,
                    application_name=application_name,
                    environment=environment,
                    region=region,
                )
            except DeploymentPlanError as e:
                errors.append(e)

        raise_if_any(errors)
        topology = ResolvedTopology(
            platform=refs[ComponentKind.PLATFORM],
            logging=refs[ComponentKind.LOGGING],
        )
        logger.info("Resolved topology: %s", topology.decisions())
        return topology

    def resolve_dependency(
        self,
        kind: ComponentKind,
        create: bool,
        existing: Optional[ExistingRef],
        *,
        application_name: str,
        environment: str,
        region: str,
    ) -> Union[CreatedRef, ExistingRef]:
        if not create:
            existing = existing or ExistingRef()
            missing = existing.missing()
            if missing:
                raise MissingExistingReference(kind.value, missing)
            return existing

        spec = ComponentSpec(
            kind=kind,
            application_name=application_name,
            environment=environment,
            region=region,
        )
        errors: List[DeploymentPlanError] = []
        resolved = {}
        wanted = [("resource_group", ResourceType.RESOURCE_GROUP), ("name", SHARED_RESOURCE_TYPES[kind])]
        if kind == ComponentKind.PLATFORM:
            wanted.append(("project", ResourceType.AI_PROJECT))
        for field, resource_type in wanted:
            try:
                resolved[field] = self.names.resolve(spec, resource_type)
            except DeploymentPlanError as e:
                errors.append(e)
        raise_if_any(errors)
        return CreatedRef(**resolved)
