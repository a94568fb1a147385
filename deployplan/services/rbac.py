"""
Role assignments for the workload identity.

Assignment ids are UUIDv5 values derived from (scope, principal, role
definition) only, so resolving the same plan again against an environment
that is already provisioned yields the same ids and the provisioner's
create-if-absent behaviour stays idempotent.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from deployplan.models import CreatedRef, ExistingRef, ResolvedTopology, RoleAssignmentSpec

logger = logging.getLogger(__name__)

# Fixed namespace for assignment id derivation. Changing it re-keys every grant.
ASSIGNMENT_NAMESPACE = uuid.UUID("5b1f3f0e-2c55-4f5e-9d0a-3c6f0c7e9a41")

# Built-in Azure role definition ids
STORAGE_BLOB_DATA_OWNER = "b7e6dc6d-f1e8-4753-8033-0f276bb0955b"
AZURE_AI_DEVELOPER = "64702f94-c441-49e6-a78b-ef80e0188fee"
COGNITIVE_SERVICES_OPENAI_USER = "5e0bd9bd-7b93-4f28-af87-19fc36ad61bd"

APP_SCOPE = "app"
PLATFORM_SCOPE = "platform"


class RolePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    role_name: str
    role_definition_id: str
    target: str
    purpose: str


DEFAULT_POLICY: Tuple[RolePolicy, ...] = (
    RolePolicy(
        role_name="Storage Blob Data Owner",
        role_definition_id=STORAGE_BLOB_DATA_OWNER,
        target=APP_SCOPE,
        purpose="Function App runtime storage access",
    ),
    RolePolicy(
        role_name="Azure AI Developer",
        role_definition_id=AZURE_AI_DEVELOPER,
        target=PLATFORM_SCOPE,
        purpose="AI Foundry project and agent access",
    ),
    RolePolicy(
        role_name="Cognitive Services OpenAI User",
        role_definition_id=COGNITIVE_SERVICES_OPENAI_USER,
        target=PLATFORM_SCOPE,
        purpose="Model invocation on the AI Foundry account",
    ),
)


def resource_group_scope(resource_group: str, subscription_id: Optional[str] = None) -> str:
    if subscription_id:
        return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
    return f"/resourceGroups/{resource_group}"


def assignment_id(scope: str, principal_id: str, role_definition_id: str) -> str:
    """Deterministic role assignment name. ARM scopes are case-insensitive."""
    key = "|".join([scope.lower(), principal_id.lower(), role_definition_id.lower()])
    return str(uuid.uuid5(ASSIGNMENT_NAMESPACE, key))


def role_definition_resource_id(role_definition_id: str, subscription_id: str) -> str:
    return (
        f"/subscriptions/{subscription_id}/providers/Microsoft.Authorization"
        f"/roleDefinitions/{role_definition_id}"
    )


class RbacPlanner:
    def __init__(self, policy: Tuple[RolePolicy, ...] = DEFAULT_POLICY):
        self.policy = policy

    def plan(
        self,
        principal_id: str,
        topology: ResolvedTopology,
        app_resource_group: str,
        *,
        subscription_id: Optional[str] = None,
        principal_deferred: bool = False,
    ) -> Tuple[RoleAssignmentSpec, ...]:
        """Least-privilege grants, one per (scope, role), in a stable order."""
        platform: Union[CreatedRef, ExistingRef] = topology.platform
        targets = {
            APP_SCOPE: (app_resource_group, APP_SCOPE),
            PLATFORM_SCOPE: (platform.resource_group, platform.variant),
        }

        planned: Dict[Tuple[str, str], RoleAssignmentSpec] = {}
        for rule in self.policy:
            resource_group, scope_kind = targets[rule.target]
            scope = resource_group_scope(resource_group, subscription_id)
            key = (scope.lower(), rule.role_definition_id)
            if key in planned:
                logger.debug("Skipping duplicate %s grant on %s", rule.role_name, scope)
                continue
            planned[key] = RoleAssignmentSpec(
                assignment_id=assignment_id(scope, principal_id, rule.role_definition_id),
                principal_id=principal_id,
                principal_deferred=principal_deferred,
                role_definition_id=rule.role_definition_id,
                role_name=rule.role_name,
                scope=scope,
                scope_resource_group=resource_group,
                scope_kind=scope_kind,
                purpose=rule.purpose,
            )

        assignments: List[RoleAssignmentSpec] = [planned[k] for k in sorted(planned)]
        logger.info("Planned %d role assignment(s) for %s", len(assignments), principal_id)
        return tuple(assignments)
