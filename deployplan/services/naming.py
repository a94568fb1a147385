"""
Deterministic resource names.

Names are composed from a per-type prefix, the application name, the
component's role token, the environment and the region code. A name that
breaks its resource type's rules is rejected, never truncated: truncation
could silently map two deployments onto the same resource.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from deployplan.models import ComponentSpec, ResolvedNames
from deployplan.services.conventions import (
    ComponentKind,
    NamingConventions,
    ResourceType,
    get_conventions,
)
from deployplan.services.errors import (
    DeploymentPlanError,
    InvalidCharset,
    InvalidRegion,
    NameTooLong,
    NameTooShort,
    raise_if_any,
)

logger = logging.getLogger(__name__)


def safe_name(name: str) -> str:
    """Pulumi logical names: any character outside [a-zA-Z0-9-] becomes a hyphen."""
    return re.sub(r"[^a-zA-Z0-9-]", "-", str(name))[:63].strip("-")


# Application-owned names resolved for every deployment
APP_COMPONENTS: Tuple[Tuple[str, ComponentKind, ResourceType], ...] = (
    ("frontend_resource_group", ComponentKind.FRONTEND, ResourceType.RESOURCE_GROUP),
    ("frontend_storage_account", ComponentKind.FRONTEND, ResourceType.STORAGE_ACCOUNT),
    ("frontend_app_insights", ComponentKind.FRONTEND, ResourceType.APP_INSIGHTS),
    ("backend_resource_group", ComponentKind.BACKEND, ResourceType.RESOURCE_GROUP),
    ("backend_storage_account", ComponentKind.BACKEND, ResourceType.STORAGE_ACCOUNT),
    ("backend_app_service_plan", ComponentKind.BACKEND, ResourceType.APP_SERVICE_PLAN),
    ("backend_function_app", ComponentKind.BACKEND, ResourceType.FUNCTION_APP),
    ("backend_app_insights", ComponentKind.BACKEND, ResourceType.APP_INSIGHTS),
)


class NameResolver:
    def __init__(self, conventions: Optional[NamingConventions] = None):
        self.conventions = conventions or get_conventions()

    def region_code(self, region: str) -> str:
        code = self.conventions.region_code(region)
        if code is None:
            raise InvalidRegion(region, self.conventions.region_codes.keys())
        return code

    def resolve(
        self,
        spec: ComponentSpec,
        resource_type: ResourceType = ResourceType.RESOURCE_GROUP,
    ) -> str:
        rule = self.conventions.rule(resource_type)
        region_code = self.region_code(spec.region)
        app = spec.application_name.strip().lower()
        env = spec.environment.strip().lower()

        if rule.hyphenated:
            role = self.conventions.role_token(spec.kind)
            name = "-".join([rule.prefix, app, role, env, region_code])
        else:
            role = self.conventions.role_token(spec.kind, short=True)
            name = f"{rule.prefix}{app}{role}{env}{region_code}".replace("-", "")

        kind = resource_type.value
        if not rule.charset.match(name):
            raise InvalidCharset(name, kind, rule.charset_hint)
        if len(name) > rule.max_length:
            raise NameTooLong(name, kind, rule.max_length)
        if len(name) < rule.min_length:
            raise NameTooShort(name, kind, rule.min_length)
        return name

    def resolve_all(self, application_name: str, environment: str, region: str) -> Dict[str, str]:
        """
        Resolve every application-owned name, collecting all failures.

        Raises:
            DeploymentPlanError: the only failure, or PlanResolutionError when
            there are several.
        """
        names: Dict[str, str] = {}
        errors: List[DeploymentPlanError] = []

        # Every name below would fail the same way on an unknown region.
        self.region_code(region)

        for field, kind, resource_type in APP_COMPONENTS:
            spec = ComponentSpec(
                kind=kind,
                application_name=application_name,
                environment=environment,
                region=region,
            )
            try:
                names[field] = self.resolve(spec, resource_type)
            except DeploymentPlanError as e:
                errors.append(e)

        raise_if_any(errors)
        logger.debug("Resolved application names: %s", names)
        return names


def merge_names(app_names: Dict[str, str], topology) -> ResolvedNames:
    """Combine application names with the effective platform and logging names."""
    return ResolvedNames(
        **app_names,
        platform_resource_group=topology.platform.resource_group,
        ai_services_account=topology.platform.name,
        ai_project=getattr(topology.platform, "project", None),
        logging_resource_group=topology.logging.resource_group,
        log_analytics_workspace=topology.logging.name,
    )
