from expense_flow.models import ApprovalLevelConfig, User, UserStatus
from expense_flow.services.role_resolver import ApprovalRoleResolver


def test_resolves_active_users_with_role(store, company):
    resolver = ApprovalRoleResolver(store)
    level = ApprovalLevelConfig(level_number=1, approver_role_ids=[company.manager_role.id])

    approvers = resolver.resolve(level, company.id)

    assert [u.id for u in approvers] == [company.manager.id, company.manager2.id]


def test_explicit_user_ids_take_priority_over_roles(store, company):
    resolver = ApprovalRoleResolver(store)
    level = ApprovalLevelConfig(
        level_number=1,
        approver_role_ids=[company.manager_role.id],
        approver_user_ids=[company.finance.id],
    )

    assert [u.id for u in resolver.resolve(level, company.id)] == [company.finance.id]


def test_inactive_users_are_excluded(store, company):
    inactive = company.manager2.model_copy(update={"status": UserStatus.INACTIVE})
    store.add_user(inactive)
    resolver = ApprovalRoleResolver(store)
    level = ApprovalLevelConfig(level_number=1, approver_role_ids=[company.manager_role.id])

    assert [u.id for u in resolver.resolve(level, company.id)] == [company.manager.id]


def test_other_company_users_are_excluded(store, company):
    store.add_user(User(id="x-1", company_id="company-2", name="X", role_ids=[company.manager_role.id]))
    resolver = ApprovalRoleResolver(store)
    level = ApprovalLevelConfig(level_number=1, approver_user_ids=["x-1"])

    assert resolver.resolve(level, company.id) == []


def test_empty_configuration_resolves_to_nobody(store, company):
    resolver = ApprovalRoleResolver(store)

    assert resolver.resolve(ApprovalLevelConfig(level_number=1), company.id) == []


def test_is_eligible_and_matching_role(store, company):
    resolver = ApprovalRoleResolver(store)
    level = ApprovalLevelConfig(level_number=2, approver_role_ids=[company.finance_role.id])

    assert resolver.is_eligible(level, company.id, company.finance.id)
    assert not resolver.is_eligible(level, company.id, company.manager.id)
    assert resolver.matching_role_id(level, company.finance) == company.finance_role.id
    assert resolver.matching_role_id(ApprovalLevelConfig(level_number=2, approver_user_ids=[company.finance.id]), company.finance) is None
