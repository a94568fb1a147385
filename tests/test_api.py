import importlib

import pytest
from fastapi.testclient import TestClient


@pytest.fixture(scope="module")
def main(tmp_path_factory):
    root = tmp_path_factory.mktemp("pulumi")
    with pytest.MonkeyPatch.context() as mp:
        mp.setenv("PULUMI_STATE_DIR", str(root / "state"))
        mp.setenv("PULUMI_WORK_DIR", str(root / "work"))
        mp.setenv("PULUMI_HOME", str(root / "home"))
        yield importlib.import_module("deployplan.main")


@pytest.fixture(scope="module")
def client(main):
    return TestClient(main.app)


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["backend"].startswith("file://")


def test_regions(client):
    regions = client.get("/regions").json()
    assert regions["eastus2"] == "eus2"
    assert regions["westeurope"] == "weu"


def test_resolve(client, existing_platform_inputs):
    res = client.post("/resolve", json={"inputs": existing_platform_inputs})
    assert res.status_code == 200
    body = res.json()
    assert body["topology"]["platform"]["variant"] == "existing"
    assert body["outputs"]["aiFoundryResourceGroupName"] == "rg-shared-ai"
    assert "platform" not in [s["id"] for s in body["stages"]]
    assert len(body["role_assignments"]) == 3


def test_resolve_reports_every_error(client):
    inputs = {"applicationName": "aibox", "region": "eastus2",
              "createPlatformGroup": False, "createLoggingGroup": False}
    res = client.post("/resolve", json={"inputs": inputs})
    assert res.status_code == 422
    detail = res.json()["detail"]
    assert detail["code"] == "PlanResolutionError"
    assert sorted(e["dependency"] for e in detail["errors"]) == ["logging", "platform"]


def test_resolve_rejects_unknown_region(client, all_new_inputs):
    res = client.post("/resolve", json={"inputs": dict(all_new_inputs, region="moon-east")})
    assert res.status_code == 422
    assert [e["code"] for e in res.json()["detail"]["errors"]] == ["InvalidRegion"]


def test_destroy_rejects_unknown_region(client):
    res = client.post("/destroy", json={"project": "aibox", "env": "dev", "region": "moon-east"})
    assert res.status_code == 422
    assert res.json()["detail"]["errors"][0]["region"] == "moon-east"


def test_assignment_ids_survive_exported_credentials(main, all_new_inputs, monkeypatch):
    for var in ("ARM_CLIENT_ID", "ARM_CLIENT_SECRET", "ARM_TENANT_ID", "ARM_SUBSCRIPTION_ID"):
        # Registered first so the values exported below are undone after the test
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    creds = main.AzureCreds(clientId="c", clientSecret="s", subscriptionId="sub-1", tenantId="t")

    first = main._resolve(all_new_inputs, creds)
    main._export_azure_creds(creds)
    second = main._resolve(all_new_inputs, creds)

    assert first.assignment_ids() == second.assignment_ids()
    assert first.subscription_id == "sub-1"


def test_resolve_ignores_exported_subscription(main, all_new_inputs, monkeypatch):
    before = main._resolve(all_new_inputs)
    monkeypatch.setenv("ARM_SUBSCRIPTION_ID", "sub-1")
    assert main._resolve(all_new_inputs).assignment_ids() == before.assignment_ids()


def test_explicit_subscription_wins_over_credentials(main, all_new_inputs):
    creds = main.AzureCreds(clientId="c", clientSecret="s", subscriptionId="sub-creds", tenantId="t")
    plan = main._resolve(dict(all_new_inputs, subscriptionId="sub-inputs"), creds)
    assert plan.subscription_id == "sub-inputs"


def test_destroy_targets_the_stack_up_created(main, client, monkeypatch):
    calls = []

    def fake_destroy(project, env, creds=None, resource_groups=None):
        calls.append((project, env, resource_groups))
        return {"destroyed": True}

    monkeypatch.setattr(main.PulumiEngine, "destroy", staticmethod(fake_destroy))
    res = client.post("/destroy", json={"project": " AIBox ", "env": "Dev", "region": "eastus2"})

    assert res.status_code == 200
    plan = main._resolve({"applicationName": "AIBox", "environmentName": "Dev", "region": "eastus2"})
    assert calls == [(
        plan.application_name,
        plan.environment,
        [plan.names.frontend_resource_group, plan.names.backend_resource_group],
    )]
