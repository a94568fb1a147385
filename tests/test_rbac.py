from deployplan.models import CreatedRef, ExistingRef, ResolvedTopology
from deployplan.services.rbac import (
    AZURE_AI_DEVELOPER,
    COGNITIVE_SERVICES_OPENAI_USER,
    DEFAULT_POLICY,
    STORAGE_BLOB_DATA_OWNER,
    RbacPlanner,
    assignment_id,
    resource_group_scope,
    role_definition_resource_id,
)

PRINCIPAL = "11111111-2222-3333-4444-555555555555"
APP_RG = "rg-aibox-backend-dev-eus2"

CREATED = ResolvedTopology(
    platform=CreatedRef(name="aif-aibox-aifoundry-dev-eus2", resource_group="rg-aibox-aifoundry-dev-eus2"),
    logging=CreatedRef(name="log-aibox-logging-dev-eus2", resource_group="rg-aibox-logging-dev-eus2"),
)
EXISTING = ResolvedTopology(
    platform=ExistingRef(name="aif-shared", resource_group="rg-shared-ai"),
    logging=ExistingRef(name="log-shared", resource_group="rg-shared-logging"),
)


def by_role(assignments):
    return {ra.role_definition_id: ra for ra in assignments}


def test_policy_scopes_for_created_platform():
    roles = by_role(RbacPlanner().plan(PRINCIPAL, CREATED, APP_RG))
    assert set(roles) == {STORAGE_BLOB_DATA_OWNER, AZURE_AI_DEVELOPER, COGNITIVE_SERVICES_OPENAI_USER}
    assert roles[STORAGE_BLOB_DATA_OWNER].scope_resource_group == APP_RG
    assert roles[STORAGE_BLOB_DATA_OWNER].scope_kind == "app"
    assert roles[AZURE_AI_DEVELOPER].scope == "/resourceGroups/rg-aibox-aifoundry-dev-eus2"
    assert roles[COGNITIVE_SERVICES_OPENAI_USER].scope_kind == "created"


def test_policy_scopes_for_existing_platform():
    roles = by_role(RbacPlanner().plan(PRINCIPAL, EXISTING, APP_RG))
    assert roles[AZURE_AI_DEVELOPER].scope_resource_group == "rg-shared-ai"
    assert roles[AZURE_AI_DEVELOPER].scope_kind == "existing"
    assert roles[COGNITIVE_SERVICES_OPENAI_USER].scope_resource_group == "rg-shared-ai"


def test_no_role_is_scoped_to_logging():
    for ra in RbacPlanner().plan(PRINCIPAL, EXISTING, APP_RG):
        assert ra.scope_resource_group != "rg-shared-logging"


def test_assignment_ids_are_stable_and_unique():
    first = RbacPlanner().plan(PRINCIPAL, CREATED, APP_RG, subscription_id="sub-1")
    second = RbacPlanner().plan(PRINCIPAL, CREATED, APP_RG, subscription_id="sub-1")
    assert first == second
    ids = [ra.assignment_id for ra in first]
    assert len(ids) == len(set(ids)) == 3


def test_assignment_id_depends_only_on_scope_principal_and_role():
    scope = resource_group_scope(APP_RG, "sub-1")
    a = assignment_id(scope, PRINCIPAL, STORAGE_BLOB_DATA_OWNER)
    assert a == assignment_id(scope.upper(), PRINCIPAL, STORAGE_BLOB_DATA_OWNER)
    assert a != assignment_id(scope, PRINCIPAL, AZURE_AI_DEVELOPER)
    assert a != assignment_id(resource_group_scope(APP_RG, "sub-2"), PRINCIPAL, STORAGE_BLOB_DATA_OWNER)
    assert a != assignment_id(scope, "other-principal", STORAGE_BLOB_DATA_OWNER)


def test_purpose_does_not_change_identifier():
    renamed = tuple(p.model_copy(update={"purpose": "something else"}) for p in DEFAULT_POLICY)
    plain = RbacPlanner().plan(PRINCIPAL, CREATED, APP_RG)
    reworded = RbacPlanner(renamed).plan(PRINCIPAL, CREATED, APP_RG)
    assert [ra.assignment_id for ra in plain] == [ra.assignment_id for ra in reworded]


def test_duplicate_policy_rules_are_collapsed():
    policy = DEFAULT_POLICY + DEFAULT_POLICY[:1]
    assert len(RbacPlanner(policy).plan(PRINCIPAL, CREATED, APP_RG)) == 3


def test_shared_scope_keeps_distinct_roles():
    # Platform living in the app's own resource group still yields one grant per role
    same_rg = ResolvedTopology(
        platform=ExistingRef(name="aif-shared", resource_group=APP_RG),
        logging=EXISTING.logging,
    )
    assignments = RbacPlanner().plan(PRINCIPAL, same_rg, APP_RG)
    assert {ra.scope_resource_group for ra in assignments} == {APP_RG}
    assert len(assignments) == 3


def test_order_is_deterministic():
    assignments = RbacPlanner().plan(PRINCIPAL, CREATED, APP_RG)
    keys = [(ra.scope.lower(), ra.role_definition_id) for ra in assignments]
    assert keys == sorted(keys)


def test_scope_includes_subscription_when_known():
    assert resource_group_scope("rg-x", "sub-1") == "/subscriptions/sub-1/resourceGroups/rg-x"
    assert resource_group_scope("rg-x") == "/resourceGroups/rg-x"
    assert role_definition_resource_id(AZURE_AI_DEVELOPER, "sub-1") == (
        "/subscriptions/sub-1/providers/Microsoft.Authorization/roleDefinitions/" + AZURE_AI_DEVELOPER
    )


def test_deferred_principal_is_flagged():
    assignments = RbacPlanner().plan("func-aibox-backend-dev-eus2", CREATED, APP_RG, principal_deferred=True)
    assert all(ra.principal_deferred for ra in assignments)
