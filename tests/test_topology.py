import pytest

from deployplan.models import CreatedRef, ExistingRef
from deployplan.services.errors import (
    InvalidRegion,
    MissingExistingReference,
    PlanResolutionError,
)
from deployplan.services.topology import TopologyResolver

NAMING = dict(application_name="aibox", environment="dev", region="eastus2")
SHARED_AI = ExistingRef(name="aif-shared", resource_group="rg-shared-ai")
SHARED_LOGS = ExistingRef(name="log-shared", resource_group="rg-shared-logging")


@pytest.fixture
def resolver():
    return TopologyResolver()


def test_all_new(resolver):
    topology = resolver.resolve(True, True, **NAMING)
    assert topology.platform == CreatedRef(
        name="aif-aibox-aifoundry-dev-eus2",
        resource_group="rg-aibox-aifoundry-dev-eus2",
        project="proj-aibox-aifoundry-dev-eus2",
    )
    assert topology.logging == CreatedRef(
        name="log-aibox-logging-dev-eus2",
        resource_group="rg-aibox-logging-dev-eus2",
    )
    assert topology.decisions() == {"platform": "created", "logging": "created"}


def test_existing_platform_new_logging(resolver):
    topology = resolver.resolve(False, True, SHARED_AI, None, **NAMING)
    assert isinstance(topology.platform, ExistingRef)
    assert topology.platform.resource_group == "rg-shared-ai"
    assert isinstance(topology.logging, CreatedRef)


def test_new_platform_existing_logging(resolver):
    # Flags are independent: this combination is not one of the named scenarios but is valid
    topology = resolver.resolve(True, False, None, SHARED_LOGS, **NAMING)
    assert topology.platform.is_created
    assert not topology.logging.is_created
    assert topology.logging.name == "log-shared"


def test_all_existing(resolver):
    topology = resolver.resolve(False, False, SHARED_AI, SHARED_LOGS, **NAMING)
    assert topology.platform == SHARED_AI
    assert topology.logging == SHARED_LOGS


def test_existing_reference_ignored_when_creating(resolver):
    topology = resolver.resolve(True, True, SHARED_AI, SHARED_LOGS, **NAMING)
    assert topology.platform.resource_group == "rg-aibox-aifoundry-dev-eus2"
    assert topology.logging.resource_group == "rg-aibox-logging-dev-eus2"


def test_missing_logging_reference(resolver):
    with pytest.raises(MissingExistingReference) as exc:
        resolver.resolve(True, False, None, None, **NAMING)
    assert exc.value.details["dependency"] == "logging"
    assert exc.value.details["missing"] == ["resource_group", "name"]


def test_partial_reference_names_missing_field(resolver):
    with pytest.raises(MissingExistingReference) as exc:
        resolver.resolve(False, True, ExistingRef(resource_group="rg-shared-ai"), None, **NAMING)
    assert exc.value.details["missing"] == ["name"]


def test_both_missing_references_reported_together(resolver):
    with pytest.raises(PlanResolutionError) as exc:
        resolver.resolve(False, False, None, None, **NAMING)
    deps = sorted(e.details["dependency"] for e in exc.value.errors)
    assert deps == ["logging", "platform"]


def test_invalid_region_reported_once(resolver):
    with pytest.raises(InvalidRegion):
        resolver.resolve(True, True, region="moon-east", application_name="aibox", environment="dev")


def test_existing_dependencies_need_no_region_lookup(resolver):
    topology = resolver.resolve(False, False, SHARED_AI, SHARED_LOGS,
                                application_name="aibox", environment="dev", region="moon-east")
    assert not topology.platform.is_created
