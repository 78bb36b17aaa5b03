from typing import Optional

from loguru import logger

from ..models import ApprovalLevelConfig, User
from .storage import ExpenseStoreBase


class ApprovalRoleResolver:
    """
    Turns an approval level's configuration into the concrete approvers.

    Explicit ``approver_user_ids`` win over ``approver_role_ids``. Only ACTIVE
    users of the requested company are ever returned. An empty result is a
    valid answer ("nobody can approve this level"), not an error.
    """

    def __init__(self, store: ExpenseStoreBase):
        self.store = store

    def resolve(self, level_config: ApprovalLevelConfig, company_id: str) -> list[User]:
        users = self.store.list_users(company_id, active_only=True)

        if level_config.approver_user_ids:
            wanted = set(level_config.approver_user_ids)
            approvers = [u for u in users if u.id in wanted]
            source = "users"
        elif level_config.approver_role_ids:
            wanted = set(level_config.approver_role_ids)
            approvers = [u for u in users if wanted.intersection(u.role_ids)]
            source = "roles"
        else:
            approvers = []
            source = "none"

        logger.debug(
            "Resolved approvers",
            company_id=company_id,
            level=level_config.level_number,
            source=source,
            approvers=[u.id for u in approvers],
        )
        return approvers

    def is_eligible(self, level_config: ApprovalLevelConfig, company_id: str, user_id: str) -> bool:
        return any(u.id == user_id for u in self.resolve(level_config, company_id))

    def matching_role_id(self, level_config: ApprovalLevelConfig, user: User) -> Optional[str]:
        """Role under which ``user`` acts at this level (None for explicit user approvers)"""
        if level_config.approver_user_ids:
            return None
        for role_id in level_config.approver_role_ids:
            if role_id in user.role_ids:
                return role_id
        return None
