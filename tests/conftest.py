import pytest

from deployplan.services.orchestrator import DeploymentOrchestrator


@pytest.fixture(autouse=True)
def no_ambient_subscription(monkeypatch):
    # Plans must not pick up a subscription from the developer's shell
    monkeypatch.delenv("AZURE_SUBSCRIPTION_ID", raising=False)
    monkeypatch.delenv("ARM_SUBSCRIPTION_ID", raising=False)
    monkeypatch.delenv("AZURE_LOCATION", raising=False)


@pytest.fixture
def orchestrator():
    return DeploymentOrchestrator()


@pytest.fixture
def all_new_inputs():
    return {
        "applicationName": "aibox",
        "environmentName": "dev",
        "region": "eastus2",
        "createPlatformGroup": True,
        "createLoggingGroup": True,
    }


@pytest.fixture
def existing_platform_inputs():
    return {
        "applicationName": "aibox",
        "environmentName": "dev",
        "region": "eastus2",
        "createPlatformGroup": False,
        "existingPlatformResourceGroup": "rg-shared-ai",
        "existingPlatformName": "aif-shared",
        "createLoggingGroup": True,
    }


@pytest.fixture
def all_existing_inputs():
    return {
        "applicationName": "aibox",
        "environmentName": "dev",
        "region": "eastus2",
        "createPlatformGroup": False,
        "existingPlatformResourceGroup": "rg-shared-ai",
        "existingPlatformName": "aif-shared",
        "createLoggingGroup": False,
        "existingLoggingResourceGroup": "rg-shared-logging",
        "existingLoggingName": "log-shared",
    }
