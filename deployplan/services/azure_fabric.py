from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional
import pulumi
from pulumi_azure_native import (
    applicationinsights,
    authorization,
    cognitiveservices,
    operationalinsights,
    resources,
    storage,
    web,
)
from deployplan.models import DeploymentStage, ResolvedPlan, RoleAssignmentSpec
from deployplan.services import dependency_graph as stages
from deployplan.services.naming import safe_name
from deployplan.services.rbac import role_definition_resource_id


class AzureFabric:
    """
    Declares the Pulumi resources for a ResolvedPlan, one stage at a time.

    Created dependencies become resources; Existing ones are read-only lookups.
    Stage edges from the plan are passed to Pulumi as explicit depends_on, since
    a conditionally declared resource cannot be inferred as a dependency.
    """

    def __init__(self, location: str):
        self.location = location
        self.plan: Optional[ResolvedPlan] = None
        self.stage_resources: Dict[str, List[pulumi.Resource]] = {}
        self.handles: Dict[str, Any] = {}
        self._outputs: Dict[str, pulumi.Output[Any]] = {}

        # Registry pattern: map stage ids to their creation methods
        self._stage_registry: Dict[str, Callable[[DeploymentStage], List[pulumi.Resource]]] = {
            stages.PLATFORM_RG: self._create_resource_group,
            stages.PLATFORM: self._create_ai_platform,
            stages.LOGGING_RG: self._create_resource_group,
            stages.LOGGING: self._create_log_analytics,
            stages.FRONTEND_RG: self._create_resource_group,
            stages.FRONTEND: self._create_frontend,
            stages.BACKEND_RG: self._create_resource_group,
            stages.BACKEND: self._create_backend,
            stages.RBAC_BACKEND: self._create_role_assignments,
            stages.RBAC_PLATFORM: self._create_role_assignments,
        }

    def outputs(self) -> Dict[str, pulumi.Output[Any]]:
        return self._outputs

    def apply_plan(self, plan: ResolvedPlan):
        self.plan = plan
        self._bind_existing()

        for stage in plan.stages:
            creator = self._stage_registry.get(stage.id)
            if creator is None:
                supported = ", ".join(self._stage_registry.keys())
                raise ValueError(
                    f"Unsupported stage: {stage.id}. "
                    f"Supported stages: {supported}"
                )
            pulumi.log.info(f"Declaring stage {stage.id} in {stage.resource_group_target}")
            self.stage_resources[stage.id] = creator(stage)

        for key, value in plan.outputs().items():
            self._outputs.setdefault(key, value)

    def _opts(self, stage: DeploymentStage) -> pulumi.ResourceOptions:
        depends_on: List[pulumi.Resource] = []
        for dep in stage.depends_on:
            depends_on.extend(self.stage_resources.get(dep, []))
        return pulumi.ResourceOptions(depends_on=depends_on)

    # -------------------- Existing dependencies --------------------

    def _bind_existing(self):
        """Look up Existing dependencies; nothing here is ever modified."""
        topology = self.plan.topology

        if not topology.platform.is_created:
            ref = topology.platform
            rg = resources.get_resource_group_output(resource_group_name=ref.resource_group)
            account = cognitiveservices.get_account_output(
                account_name=ref.name, resource_group_name=ref.resource_group
            )
            self.handles["platform-rg-id"] = rg.id
            self._outputs["aiFoundryAccountEndpoint"] = account.properties.apply(
                lambda p: p.endpoint if p else None
            )

        if not topology.logging.is_created:
            ref = topology.logging
            workspace = operationalinsights.get_workspace_output(
                resource_group_name=ref.resource_group, workspace_name=ref.name
            )
            self.handles["workspace-id"] = workspace.id

    # -------------------- Stages --------------------

    def _create_resource_group(self, stage: DeploymentStage) -> List[pulumi.Resource]:
        rg = resources.ResourceGroup(
            safe_name(stage.resource_group_target),
            resource_group_name=stage.resource_group_target,
            location=self.location,
            tags=self.plan.tags,
            opts=self._opts(stage),
        )
        self.handles[f"{stage.id}-id"] = rg.id
        self._outputs[f"{stage.id}-name"] = rg.name
        return [rg]

    def _create_ai_platform(self, stage: DeploymentStage) -> List[pulumi.Resource]:
        ref = self.plan.topology.platform
        opts = self._opts(stage)

        account = cognitiveservices.Account(
            safe_name(ref.name),
            account_name=ref.name,
            resource_group_name=ref.resource_group,
            location=self.location,
            kind="AIServices",
            sku=cognitiveservices.SkuArgs(name="S0"),
            identity=cognitiveservices.IdentityArgs(type="SystemAssigned"),
            properties=cognitiveservices.AccountPropertiesArgs(
                custom_sub_domain_name=ref.name,
                allow_project_management=True,
                public_network_access="Enabled",
            ),
            tags=self.plan.tags,
            opts=opts,
        )

        project = cognitiveservices.Project(
            safe_name(ref.project),
            account_name=account.name,
            project_name=ref.project,
            resource_group_name=ref.resource_group,
            location=self.location,
            identity=cognitiveservices.IdentityArgs(type="SystemAssigned"),
            properties=cognitiveservices.ProjectPropertiesArgs(
                description=f"{self.plan.application_name} agents",
                display_name=ref.project,
            ),
            tags=self.plan.tags,
            opts=pulumi.ResourceOptions(depends_on=[account]),
        )

        self._outputs["aiFoundryAccountEndpoint"] = account.properties.apply(
            lambda p: p.endpoint if p else None
        )
        self._outputs["aiFoundryAccountId"] = account.id
        return [account, project]

    def _create_log_analytics(self, stage: DeploymentStage) -> List[pulumi.Resource]:
        ref = self.plan.topology.logging
        workspace = operationalinsights.Workspace(
            safe_name(ref.name),
            workspace_name=ref.name,
            resource_group_name=ref.resource_group,
            location=self.location,
            sku=operationalinsights.WorkspaceSkuArgs(name="PerGB2018"),
            retention_in_days=30,
            tags=self.plan.tags,
            opts=self._opts(stage),
        )
        self.handles["workspace-id"] = workspace.id
        self._outputs["logAnalyticsWorkspaceId"] = workspace.id
        return [workspace]

    def _create_app_insights(self, name: str, resource_group: str, opts) -> applicationinsights.Component:
        return applicationinsights.Component(
            safe_name(name),
            resource_name_=name,
            resource_group_name=resource_group,
            location=self.location,
            kind="web",
            application_type=applicationinsights.ApplicationType.WEB,
            ingestion_mode=applicationinsights.IngestionMode.LOG_ANALYTICS,
            workspace_resource_id=self.handles["workspace-id"],
            tags=self.plan.tags,
            opts=opts,
        )

    def _create_storage_account(self, name: str, resource_group: str, opts) -> storage.StorageAccount:
        return storage.StorageAccount(
            safe_name(name),
            resource_group_name=resource_group,
            account_name=name,  # already validated: [a-z0-9]{3,24}
            location=self.location,
            sku=storage.SkuArgs(name="Standard_LRS"),
            kind="StorageV2",
            enable_https_traffic_only=True,
            minimum_tls_version="TLS1_2",
            allow_blob_public_access=False,
            tags=self.plan.tags,
            opts=opts,
        )

    def _create_frontend(self, stage: DeploymentStage) -> List[pulumi.Resource]:
        names = self.plan.names
        opts = self._opts(stage)

        acct = self._create_storage_account(names.frontend_storage_account, names.frontend_resource_group, opts)
        site = storage.StorageAccountStaticWebsite(
            f"{safe_name(names.frontend_storage_account)}-web",
            account_name=acct.name,
            resource_group_name=names.frontend_resource_group,
            index_document="index.html",
            error404_document="index.html",
        )
        insights = self._create_app_insights(names.frontend_app_insights, names.frontend_resource_group, opts)

        self._outputs["frontendStaticWebsiteUrl"] = acct.primary_endpoints.apply(
            lambda e: e.web if e else None
        )
        self._outputs["frontendAppInsightsConnectionString"] = insights.connection_string
        return [acct, site, insights]

    def _create_backend(self, stage: DeploymentStage) -> List[pulumi.Resource]:
        names = self.plan.names
        opts = self._opts(stage)

        func_storage = self._create_storage_account(
            names.backend_storage_account, names.backend_resource_group, opts
        )
        insights = self._create_app_insights(names.backend_app_insights, names.backend_resource_group, opts)

        # Consumption plan
        plan = web.AppServicePlan(
            safe_name(names.backend_app_service_plan),
            name=names.backend_app_service_plan,
            resource_group_name=names.backend_resource_group,
            location=self.location,
            kind="FunctionApp",
            reserved=True,  # Required for Linux Function Apps
            sku=web.SkuDescriptionArgs(name="Y1", tier="Dynamic"),
            tags=self.plan.tags,
            opts=opts,
        )

        func_app = web.WebApp(
            safe_name(names.backend_function_app),
            name=names.backend_function_app,
            resource_group_name=names.backend_resource_group,
            location=self.location,
            server_farm_id=plan.id,
            kind="functionapp,linux",
            https_only=True,
            identity=web.ManagedServiceIdentityArgs(type=web.ManagedServiceIdentityType.SYSTEM_ASSIGNED),
            site_config=web.SiteConfigArgs(
                linux_fx_version="DOTNET-ISOLATED|8.0",
                app_settings=[
                    # Identity-based storage connection, granted in the rbac-backend stage
                    web.NameValuePairArgs(name="AzureWebJobsStorage__accountName", value=func_storage.name),
                    web.NameValuePairArgs(name="FUNCTIONS_EXTENSION_VERSION", value="~4"),
                    web.NameValuePairArgs(name="FUNCTIONS_WORKER_RUNTIME", value="dotnet-isolated"),
                    web.NameValuePairArgs(
                        name="APPLICATIONINSIGHTS_CONNECTION_STRING", value=insights.connection_string
                    ),
                ] + [
                    web.NameValuePairArgs(name=key, value=value)
                    for key, value in self.plan.function_app_settings().items()
                ],
            ),
            tags=self.plan.tags,
            opts=opts,
        )

        self.handles["workload-principal-id"] = func_app.identity.apply(
            lambda i: i.principal_id if i else None
        )
        self._outputs["backendFunctionAppUrl"] = pulumi.Output.concat("https://", func_app.default_host_name)
        self._outputs["backendApiUrl"] = pulumi.Output.concat("https://", func_app.default_host_name, "/api")
        return [func_storage, insights, plan, func_app]

    def _create_role_assignments(self, stage: DeploymentStage) -> List[pulumi.Resource]:
        created: List[pulumi.Resource] = []
        opts = self._opts(stage)
        for ra in self.plan.role_assignments:
            if ra.scope_resource_group != stage.resource_group_target:
                continue
            if stage.id == stages.RBAC_BACKEND and ra.scope_kind != "app":
                continue
            if stage.id == stages.RBAC_PLATFORM and ra.scope_kind == "app":
                continue
            created.append(self._role_assignment(ra, opts))
        return created

    def _role_assignment(self, ra: RoleAssignmentSpec, opts) -> authorization.RoleAssignment:
        subscription_id = self.plan.subscription_id or authorization.get_client_config_output().subscription_id
        role_definition_id = pulumi.Output.from_input(subscription_id).apply(
            lambda sub: role_definition_resource_id(ra.role_definition_id, sub)
        )
        principal_id = self.handles["workload-principal-id"] if ra.principal_deferred else ra.principal_id

        # Named by the plan's deterministic id so re-applies update in place.
        return authorization.RoleAssignment(
            f"ra-{ra.assignment_id}",
            role_assignment_name=ra.assignment_id,
            principal_id=principal_id,
            principal_type=authorization.PrincipalType.SERVICE_PRINCIPAL,
            role_definition_id=role_definition_id,
            scope=self._scope_id(ra),
            description=ra.purpose,
            opts=opts,
        )

    def _scope_id(self, ra: RoleAssignmentSpec):
        if ra.scope.startswith("/subscriptions/"):
            return ra.scope
        if ra.scope_kind == "existing":
            return self.handles["platform-rg-id"]
        stage_id = stages.BACKEND_RG if ra.scope_kind == "app" else stages.PLATFORM_RG
        return self.handles[f"{stage_id}-id"]
