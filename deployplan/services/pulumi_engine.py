# deployplan/services/pulumi_engine.py
from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
import requests
from pulumi import automation as auto
from deployplan.models import ResolvedPlan
from .program_builder import build_pulumi_program

logger = logging.getLogger(__name__)

ARM_API_VERSION = "2021-04-01"

def init_pulumi_env() -> None:
    """
    Compute a clean local backend + pulumi home from env (PULUMI_STATE_DIR / PULUMI_WORK_DIR)
    and apply them to the current process so /health can display them before any preview/up.
    """
    os.environ.update(_ensure_pulumi_env())

def _win_path(p: str) -> str:
    # Convert Git Bash style /c/... to C:\...
    if p and p.startswith("/c/"):
        return "C:\\" + p[3:].replace("/", "\\")
    return p

def _ensure_pulumi_env() -> dict:
    env = os.environ.copy()
    env.setdefault("PULUMI_SECRETS_PROVIDER", "passphrase")
    env.setdefault("PULUMI_CONFIG_PASSPHRASE", "local-dev-only")

    state_raw = _win_path(os.getenv("PULUMI_STATE_DIR", str(Path.cwd() / "pulumi-state")))
    state_dir = Path(state_raw).resolve()
    state_dir.mkdir(parents=True, exist_ok=True)

    # file://C:/... (two slashes) avoids C:/C: duplication on Windows
    env["PULUMI_BACKEND_URL"] = "file://" + state_dir.as_posix()

    home_raw = os.getenv("PULUMI_HOME")
    if home_raw:
        pulumi_home = Path(_win_path(home_raw)).resolve()
    else:
        pulumi_home = Path.home() / ".pulumi"
    pulumi_home.mkdir(parents=True, exist_ok=True)
    env["PULUMI_HOME"] = str(pulumi_home)

    logger.debug("Using PULUMI_BACKEND_URL = %s", env["PULUMI_BACKEND_URL"])
    logger.debug("Using PULUMI_HOME        = %s", env["PULUMI_HOME"])
    return env

def _get_work_dir() -> Path:
    work_dir_raw = os.getenv("PULUMI_WORK_DIR", str(Path.cwd() / "pulumi-work"))
    work_dir = Path(_win_path(work_dir_raw)).resolve()
    work_dir.mkdir(parents=True, exist_ok=True)
    return work_dir

def stack_name(project: str, env_name: str) -> str:
    return f"{project}-{env_name}"

def _stack(project: str, env_name: str, program):
    pulumi_env = _ensure_pulumi_env()
    os.environ.update(pulumi_env)  # make sure the CLI child sees our env

    stack = auto.create_or_select_stack(
        stack_name=stack_name(project, env_name),
        project_name=project,
        program=program,
        work_dir=str(_get_work_dir()),
    )
    return stack, pulumi_env

def _unwrap(x):
    if hasattr(x, "value"):
        return _unwrap(x.value)
    if isinstance(x, dict):
        return {k: _unwrap(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return type(x)(_unwrap(v) for v in x)
    return x

def explain_failure(error_msg: str) -> str:
    """Map well known Azure failures to an actionable message."""
    if "StorageAccountAlreadyTaken" in error_msg or "already taken" in error_msg.lower():
        return (
            "Storage account name is already taken. Storage account names must be globally unique. "
            "Solution: use a different application or environment name."
        )
    if "RequestDisallowedByAzure" in error_msg or "RequestDisallowedByPolicy" in error_msg:
        return (
            "Azure subscription policy blocked this deployment. Your subscription restricts which regions "
            "or resource types can be used. Solution: try a different region."
        )
    if "RoleAssignmentExists" in error_msg:
        return (
            "A role assignment with the same principal, role and scope already exists under a different name. "
            "Solution: remove the manually created assignment so the planned one can be applied."
        )
    if "InsufficientQuota" in error_msg:
        return "Insufficient quota for the AI Foundry account in this region. Solution: try a different region."
    if "ResourceGroupNotFound" in error_msg:
        return (
            "An existing resource group referenced by the plan was not found. "
            "Solution: check the existing platform/logging resource group names."
        )
    return f"Deployment failed: {error_msg}"

class PulumiEngine:
    @staticmethod
    def _set_config(stack, plan: ResolvedPlan):
        stack.set_config("azure-native:location", auto.ConfigValue(value=plan.region))
        if plan.subscription_id:
            stack.set_config("azure-native:subscriptionId", auto.ConfigValue(value=plan.subscription_id))

    @staticmethod
    def preview(plan: ResolvedPlan):
        program = build_pulumi_program(plan)
        stack, _ = _stack(plan.application_name, plan.environment, program)
        PulumiEngine._set_config(stack, plan)
        res = stack.preview(on_output=logger.info)
        return {
            "preview": True,
            "changeSummary": res.change_summary,
        }

    @staticmethod
    def up(plan: ResolvedPlan):
        program = build_pulumi_program(plan)
        stack, _ = _stack(plan.application_name, plan.environment, program)
        PulumiEngine._set_config(stack, plan)

        try:
            up_res = stack.up(on_output=logger.info)
        except Exception as e:
            error_msg = str(e.args[0]) if e.args else str(e)
            logger.error("Pulumi up failed for %s: %s", stack.name, error_msg)
            raise ValueError(explain_failure(error_msg)) from e

        outputs = {k: _unwrap(v) for k, v in (up_res.outputs or {}).items()}

        # Summary members differ across SDK versions
        duration_sec = None
        resource_changes = None
        if getattr(up_res, "summary", None):
            s = up_res.summary
            resource_changes = getattr(s, "resource_changes", None)
            dur = getattr(s, "duration", None)
            if hasattr(dur, "seconds"):
                duration_sec = dur.seconds
            elif isinstance(dur, (int, float)):
                duration_sec = dur

        return {
            "preview": False,
            "outputs": outputs,
            "summary": {
                "resources": resource_changes,
                "duration_sec": duration_sec,
            },
        }

    @staticmethod
    def _get_azure_token(client_id: str, client_secret: str, tenant_id: str) -> str:
        """Get Azure AD access token for Resource Manager API"""
        url = f"https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
        data = {
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": "https://management.azure.com/.default",
            "grant_type": "client_credentials"
        }
        response = requests.post(url, data=data, timeout=30)
        response.raise_for_status()
        return response.json()["access_token"]

    @staticmethod
    def _delete_resource_group_direct(subscription_id: str, resource_group: str, creds: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Delete resource group directly via Azure REST API"""
        if not creds:
            return {"deleted": False, "message": "Azure credentials required for direct deletion"}

        try:
            token = PulumiEngine._get_azure_token(
                creds["clientId"],
                creds["clientSecret"],
                creds["tenantId"]
            )
            url = (
                f"https://management.azure.com/subscriptions/{subscription_id}"
                f"/resourcegroups/{resource_group}?api-version={ARM_API_VERSION}"
            )
            headers = {
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json"
            }
            response = requests.delete(url, headers=headers, timeout=60)
        except requests.RequestException as e:
            logger.error("Direct deletion of %s failed: %s", resource_group, e)
            return {"deleted": False, "message": f"Error deleting resource group: {e}"}

        if response.status_code == 202:
            return {"deleted": True, "message": f"Resource group '{resource_group}' deletion initiated. This may take 5-10 minutes."}
        if response.status_code == 200:
            return {"deleted": True, "message": f"Resource group '{resource_group}' deleted successfully."}
        if response.status_code == 404:
            return {"deleted": False, "message": f"Resource group '{resource_group}' not found (may already be deleted)."}
        return {
            "deleted": False,
            "message": f"Failed to delete resource group. Status: {response.status_code}",
            "error": response.text
        }

    @staticmethod
    def _delete_direct(resource_groups: List[str], creds: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        results = {
            rg: PulumiEngine._delete_resource_group_direct(creds.get("subscriptionId", ""), rg, creds)
            for rg in resource_groups
        }
        return {
            "deleted": bool(results) and all(r.get("deleted") for r in results.values()),
            "resource_groups": results,
        }

    @staticmethod
    def destroy(project: str, env_name: str, creds: Optional[Dict[str, Any]] = None,
                resource_groups: Optional[List[str]] = None):
        """
        Destroy the stack. When Pulumi cannot, fall back to deleting the
        application's own resource groups directly; shared dependencies are
        never deleted this way.
        """
        def program(): pass
        resource_groups = resource_groups or []

        try:
            stack, _ = _stack(project, env_name, program)
        except Exception as e:
            logger.warning("Stack %s not found: %s", stack_name(project, env_name), e)
            if creds and resource_groups:
                return {
                    "destroyed": False,
                    "pulumi_stack": "not_found",
                    "attempting_direct_deletion": True,
                    **PulumiEngine._delete_direct(resource_groups, creds),
                }
            return {
                "destroyed": False,
                "message": f"Stack '{stack_name(project, env_name)}' not found and no credentials or resource groups provided for direct deletion.",
                "error": str(e)
            }

        try:
            res = stack.destroy(on_output=logger.info)
        except Exception as e:
            logger.error("Pulumi destroy failed for %s: %s", stack.name, e)
            if creds and resource_groups:
                direct = PulumiEngine._delete_direct(resource_groups, creds)
                return {
                    "destroyed": direct["deleted"],
                    "pulumi_destroy_failed": True,
                    "error": str(e),
                    **direct,
                }
            return {
                "destroyed": False,
                "error": str(e),
                "message": "Destroy failed. Some resources may still exist. Provide credentials and a region to attempt direct deletion."
            }

        deleted_count = 0
        if getattr(res, "summary", None):
            resource_changes = getattr(res.summary, "resource_changes", None) or {}
            deleted_count = resource_changes.get("delete", 0) if isinstance(resource_changes, dict) else 0

        try:
            stack.workspace.remove_stack(stack.name)
        except Exception as e:
            logger.debug("Stack %s already removed: %s", stack.name, e)

        return {
            "destroyed": True,
            "resources_deleted": deleted_count,
            "message": f"Destroyed {deleted_count} resources via Pulumi. Deletion may take 5-10 minutes to complete in Azure.",
        }
