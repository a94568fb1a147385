from __future__ import annotations
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Set, Tuple, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from deployplan.services.conventions import ComponentKind
from deployplan.services.utils import get_default_location


# -------------------- Inputs --------------------

DEFAULT_AGENT_NAME = "AI in A Box"


class DeploymentInputs(BaseModel):
    """Flat parameter bag for one deployment. Unknown fields are ignored."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    application_name: str = Field(alias="applicationName")
    environment_name: str = Field(default="dev", alias="environmentName")
    region: str = Field(
        default_factory=get_default_location,
        validation_alias=AliasChoices("region", "location"),
    )
    create_platform_group: bool = Field(default=True, alias="createPlatformGroup")
    create_logging_group: bool = Field(default=True, alias="createLoggingGroup")
    existing_platform_resource_group: Optional[str] = Field(default=None, alias="existingPlatformResourceGroup")
    existing_platform_name: Optional[str] = Field(default=None, alias="existingPlatformName")
    existing_logging_resource_group: Optional[str] = Field(default=None, alias="existingLoggingResourceGroup")
    existing_logging_name: Optional[str] = Field(default=None, alias="existingLoggingName")
    workload_principal_id: Optional[str] = Field(default=None, alias="workloadPrincipalId")
    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
    ai_foundry_endpoint: Optional[str] = Field(default=None, alias="aiFoundryEndpoint")
    ai_foundry_agent_id: Optional[str] = Field(default=None, alias="aiFoundryAgentId")
    ai_foundry_agent_name: str = Field(default=DEFAULT_AGENT_NAME, alias="aiFoundryAgentName")
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("application_name", "environment_name", "region")
    def _required_text(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator(
        "existing_platform_resource_group",
        "existing_platform_name",
        "existing_logging_resource_group",
        "existing_logging_name",
        "workload_principal_id",
        "subscription_id",
        "ai_foundry_endpoint",
        "ai_foundry_agent_id",
    )
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("ai_foundry_agent_name", mode="before")
    def _default_agent_name(cls, v: Optional[str]) -> str:
        return (v or "").strip() or DEFAULT_AGENT_NAME

    def existing_platform(self) -> ExistingRef:
        return ExistingRef(
            name=self.existing_platform_name or "",
            resource_group=self.existing_platform_resource_group or "",
        )

    def existing_logging(self) -> ExistingRef:
        return ExistingRef(
            name=self.existing_logging_name or "",
            resource_group=self.existing_logging_resource_group or "",
        )


class ComponentSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ComponentKind
    application_name: str
    environment: str
    region: str


# -------------------- Topology --------------------

class CreatedRef(BaseModel):
    """Provisioned by this deployment; names come from the name resolver."""

    model_config = ConfigDict(frozen=True)

    variant: Literal["created"] = "created"
    name: str
    resource_group: str
    project: Optional[str] = None

    @property
    def is_created(self) -> bool:
        return True


class ExistingRef(BaseModel):
    """Supplied by the caller and only ever read."""

    model_config = ConfigDict(frozen=True)

    variant: Literal["existing"] = "existing"
    name: str = ""
    resource_group: str = ""

    @property
    def is_created(self) -> bool:
        return False

    def missing(self) -> List[str]:
        return [f for f in ("resource_group", "name") if not getattr(self, f)]


ResourceRef = Annotated[Union[CreatedRef, ExistingRef], Field(discriminator="variant")]


class ResolvedTopology(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform: ResourceRef
    logging: ResourceRef

    def ref(self, kind: ComponentKind) -> Union[CreatedRef, ExistingRef]:
        if kind == ComponentKind.PLATFORM:
            return self.platform
        if kind == ComponentKind.LOGGING:
            return self.logging
        raise KeyError(kind)

    def decisions(self) -> Dict[str, str]:
        return {"platform": self.platform.variant, "logging": self.logging.variant}


# -------------------- Stages --------------------

class DeploymentStage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    resource_group_target: str
    depends_on: Tuple[str, ...] = ()
    description: str = ""
    resources: Tuple[str, ...] = ()

    @field_validator("depends_on", mode="before")
    def _sorted_unique(cls, v: Iterable[str]) -> Tuple[str, ...]:
        return tuple(sorted(set(v or ())))


class DependencyGraph(BaseModel):
    """Stages in topological order, with the edges kept explicit."""

    model_config = ConfigDict(frozen=True)

    stages: Tuple[DeploymentStage, ...] = ()

    def ids(self) -> List[str]:
        return [s.id for s in self.stages]

    def stage(self, stage_id: str) -> DeploymentStage:
        for s in self.stages:
            if s.id == stage_id:
                return s
        raise KeyError(stage_id)

    def has_stage(self, stage_id: str) -> bool:
        return any(s.id == stage_id for s in self.stages)

    def edges(self) -> List[Tuple[str, str]]:
        """(dependency, dependent) pairs."""
        return [(dep, s.id) for s in self.stages for dep in s.depends_on]

    def dependencies_of(self, stage_id: str) -> Tuple[str, ...]:
        return self.stage(stage_id).depends_on

    def dependents_of(self, stage_id: str) -> List[str]:
        return [s.id for s in self.stages if stage_id in s.depends_on]

    def ready(self, completed: Iterable[str]) -> List[str]:
        """Stages not yet completed whose dependencies all are."""
        done: Set[str] = set(completed)
        return [
            s.id for s in self.stages
            if s.id not in done and all(d in done for d in s.depends_on)
        ]

    def batches(self) -> List[List[str]]:
        """Levels of stages that can run in parallel, in execution order."""
        levels: List[List[str]] = []
        done: Set[str] = set()
        while len(done) < len(self.stages):
            level = self.ready(done)
            if not level:
                break
            levels.append(level)
            done.update(level)
        return levels

    def cross_group_edges(self) -> List[Tuple[str, str]]:
        """
        Edges whose endpoints target different resource groups.

        RBAC stages target the group they grant on, so a grant on an Existing
        group shows up here even though nothing is created in it.
        """
        targets = {s.id: s.resource_group_target for s in self.stages}
        return [(a, b) for a, b in self.edges() if targets[a] != targets[b]]


# -------------------- RBAC --------------------

class RoleAssignmentSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    assignment_id: str
    principal_id: str
    principal_deferred: bool = False
    role_definition_id: str
    role_name: str
    scope: str
    scope_resource_group: str
    scope_kind: Literal["app", "created", "existing"]
    purpose: str


# -------------------- Validation --------------------

class NamingWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: Literal["NamingConventionWarning"] = "NamingConventionWarning"
    dependency: Optional[str] = None
    resource_group: str
    expected_tokens: Tuple[str, ...] = ()
    message: str


class EndpointWarning(BaseModel):
    """The backend has no project endpoint to call until one is supplied."""

    model_config = ConfigDict(frozen=True)

    code: Literal["MissingEndpointWarning"] = "MissingEndpointWarning"
    dependency: Optional[str] = None
    message: str


PlanWarning = Annotated[Union[NamingWarning, EndpointWarning], Field(discriminator="code")]


# -------------------- Plan --------------------

class ResolvedNames(BaseModel):
    model_config = ConfigDict(frozen=True)

    frontend_resource_group: str
    frontend_storage_account: str
    frontend_app_insights: str
    backend_resource_group: str
    backend_storage_account: str
    backend_app_service_plan: str
    backend_function_app: str
    backend_app_insights: str
    platform_resource_group: str
    ai_services_account: str
    ai_project: Optional[str] = None
    logging_resource_group: str
    log_analytics_workspace: str


class ResolvedPlan(BaseModel):
    """Everything a provisioner needs for one deployment. Never mutated."""

    model_config = ConfigDict(frozen=True)

    application_name: str
    environment: str
    region: str
    region_code: str
    subscription_id: Optional[str] = None
    names: ResolvedNames
    topology: ResolvedTopology
    graph: DependencyGraph
    role_assignments: Tuple[RoleAssignmentSpec, ...] = ()
    warnings: Tuple[PlanWarning, ...] = ()
    ai_foundry_endpoint: Optional[str] = None
    ai_foundry_agent_id: Optional[str] = None
    ai_foundry_agent_name: str = DEFAULT_AGENT_NAME
    tags: Dict[str, str] = Field(default_factory=dict)

    @property
    def stages(self) -> Tuple[DeploymentStage, ...]:
        return self.graph.stages

    def assignment_ids(self) -> List[str]:
        return [ra.assignment_id for ra in self.role_assignments]

    def outputs(self) -> Dict[str, Any]:
        n = self.names
        return {
            "frontendResourceGroupName": n.frontend_resource_group,
            "backendResourceGroupName": n.backend_resource_group,
            "frontendStorageAccountName": n.frontend_storage_account,
            "backendFunctionAppName": n.backend_function_app,
            "backendApiUrl": f"https://{n.backend_function_app}.azurewebsites.net/api",
            "aiFoundryEndpoint": self.ai_foundry_endpoint,
            "aiFoundryResourceGroupName": n.platform_resource_group,
            "aiFoundryInstanceName": n.ai_services_account,
            "logAnalyticsWorkspaceName": n.log_analytics_workspace,
            "logAnalyticsResourceGroupName": n.logging_resource_group,
            "platformTopology": self.topology.platform.variant,
            "loggingTopology": self.topology.logging.variant,
        }

    def function_app_settings(self) -> Dict[str, str]:
        """Settings the backend proxy reads to reach its agent."""
        return {
            "AI_FOUNDRY_ENDPOINT": self.ai_foundry_endpoint or "",
            "AI_FOUNDRY_AGENT_ID": self.ai_foundry_agent_id or "",
            "AI_FOUNDRY_AGENT_NAME": self.ai_foundry_agent_name,
            "AI_FOUNDRY_WORKSPACE_NAME": self.names.ai_services_account,
        }

    def to_json(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["stages"] = data.pop("graph")["stages"]
        data["batches"] = self.graph.batches()
        data["outputs"] = self.outputs()
        return data


# -------------------- API --------------------

class AzureCreds(BaseModel):
    clientId: str
    clientSecret: str
    subscriptionId: str
    tenantId: str

class ResolveRequest(BaseModel):
    inputs: Dict[str, Any]

class PreviewRequest(BaseModel):
    inputs: Dict[str, Any]
    creds: Optional[AzureCreds] = None

class UpRequest(BaseModel):
    inputs: Dict[str, Any]
    creds: Optional[AzureCreds] = None

class DestroyRequest(BaseModel):
    project: str
    env: str
    region: Optional[str] = None
    creds: Optional[AzureCreds] = None
