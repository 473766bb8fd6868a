"""Profile completion scoring."""

from __future__ import annotations

from typing import Any

from .account import Account
from .errors import AccountNotFound
from .profiles import PROFILE_WEIGHTS

BASE_FIELDS: tuple[str, ...] = (
    "name",
    "email",
    "phone",
    "bio",
    "date_of_birth",
    "nationality",
    "avatar",
    "languages",
)


def base_completion(account: Account) -> tuple[int, int]:
    """Return ``(completed, total)`` for the role-independent fields."""
    completed = sum(1 for field_name in BASE_FIELDS if getattr(account, field_name))
    return completed, len(BASE_FIELDS)


class ProfileCompletionScorer:
    """Compute and persist a 0-100 completion score for an account.

    Each role contributes only while its attachment is active and its profile exists, so the
    denominator never drops below the eight base fields.
    """

    def __init__(self, repository: Any) -> None:
        self._repository = repository

    def compute(self, account_id: str) -> int:
        account = self._repository.get_account(account_id)
        if account is None:
            raise AccountNotFound("account not found")

        completed, total = base_completion(account)
        for attachment in self._repository.list_role_attachments(account_id):
            weight = PROFILE_WEIGHTS.get(attachment.role)
            if not attachment.is_active or weight is None:
                continue
            profile = self._repository.find_role_profile(account_id, attachment.role)
            if profile is None:
                continue
            total += weight
            completed += min(profile.completed_fields(), weight)
        # round half up
        return (200 * completed + total) // (2 * total)

    def score(self, account_id: str) -> int:
        """Recompute the score and store it on the account when it changed."""
        value = self.compute(account_id)
        account = self._repository.get_account(account_id)
        if account is not None and account.profile_completion != value:
            self._repository.update_account(account_id, {"profile_completion": value})
        return value
