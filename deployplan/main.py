from __future__ import annotations

import logging
import os, shutil
from typing import List, Optional, Tuple

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from deployplan.models import AzureCreds, ComponentSpec, DestroyRequest, PreviewRequest, ResolveRequest, UpRequest
from deployplan.services.conventions import ComponentKind, ResourceType, get_conventions
from deployplan.services.errors import DeploymentPlanError, PlanResolutionError
from deployplan.services.naming import NameResolver
from deployplan.services.orchestrator import DeploymentOrchestrator
from deployplan.services.utils import configure_logging, get_allowed_origins, get_default_location
from deployplan.services.pulumi_engine import PulumiEngine, init_pulumi_env

load_dotenv()
configure_logging()
init_pulumi_env()

logger = logging.getLogger(__name__)

app = FastAPI(title="Deployment topology resolver", version="0.3.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

orchestrator = DeploymentOrchestrator()

def _export_azure_creds(creds: Optional[AzureCreds]):
    if not creds:
        return
    os.environ["ARM_CLIENT_ID"] = creds.clientId
    os.environ["ARM_CLIENT_SECRET"] = creds.clientSecret
    os.environ["ARM_TENANT_ID"] = creds.tenantId
    os.environ["ARM_SUBSCRIPTION_ID"] = creds.subscriptionId

def _resolve(inputs: dict, creds: Optional[AzureCreds] = None):
    # The subscription comes from the request only, so the process env never shifts assignment ids
    if creds and not (inputs.get("subscriptionId") or inputs.get("subscription_id")):
        inputs = {**inputs, "subscriptionId": creds.subscriptionId}
    try:
        return orchestrator.resolve(inputs)
    except DeploymentPlanError as e:
        failure = e if isinstance(e, PlanResolutionError) else PlanResolutionError([e])
        raise HTTPException(status_code=422, detail=failure.to_dict())

def _stack_identity(project: str, env: str) -> Tuple[str, str]:
    """Same normalization the plan applies, so destroy selects the stack up created."""
    return project.strip().lower(), env.strip().lower()

def _app_resource_groups(project: str, env: str, region: Optional[str]) -> List[str]:
    """Resource groups owned by the application itself; shared ones are never listed."""
    if not region:
        return []
    resolver = NameResolver()
    return [
        resolver.resolve(
            ComponentSpec(kind=kind, application_name=project, environment=env, region=region),
            ResourceType.RESOURCE_GROUP,
        )
        for kind in (ComponentKind.FRONTEND, ComponentKind.BACKEND)
    ]

@app.get("/health")
def health():
    return {
        "status": "ok",
        "locationDefault": get_default_location(),
        "pulumiOnPath": bool(shutil.which("pulumi")),
        "backend": os.getenv("PULUMI_BACKEND_URL", ""),
    }

@app.get("/regions")
def regions():
    return get_conventions().regions()

@app.post("/resolve")
def resolve(req: ResolveRequest):
    return _resolve(req.inputs).to_json()

@app.post("/preview")
def preview(req: PreviewRequest):
    plan = _resolve(req.inputs, req.creds)
    try:
        _export_azure_creds(req.creds)
        return {"plan": plan.to_json(), **PulumiEngine.preview(plan)}
    except Exception as e:
        logger.exception("Preview failed")
        raise HTTPException(status_code=400, detail=str(e))

@app.post("/up")
def up(req: UpRequest):
    plan = _resolve(req.inputs, req.creds)
    try:
        _export_azure_creds(req.creds)
        return {"plan": plan.to_json(), **PulumiEngine.up(plan)}
    except Exception as e:
        logger.exception("Up failed")
        raise HTTPException(status_code=400, detail=str(e))

@app.post("/destroy")
def destroy(req: DestroyRequest):
    try:
        project, env = _stack_identity(req.project, req.env)
        resource_groups = _app_resource_groups(project, env, req.region)
    except DeploymentPlanError as e:
        raise HTTPException(status_code=422, detail=PlanResolutionError([e]).to_dict())
    try:
        creds = req.creds.model_dump() if req.creds else None
        return PulumiEngine.destroy(project, env, creds, resource_groups)
    except Exception as e:
        logger.exception("Destroy failed")
        raise HTTPException(status_code=400, detail=str(e))
