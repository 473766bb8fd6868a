"""Bulk account and role administration."""

from __future__ import annotations

import logging
from typing import Any

from role_schemas import RoleKind

from .contracts import AccountPredicate, BulkAction, TargetOutcome
from .errors import (
    DuplicateRole,
    FieldError,
    Forbidden,
    RoleAlreadyActive,
    RoleRequired,
    SelfModification,
    StoreFailure,
    UnknownTargets,
    ValidationFailed,
)
from .provisioner import RoleProvisioner
from .scoring import ProfileCompletionScorer
from ..repository import translate_store_errors

logger = logging.getLogger(__name__)

_ACCOUNT_FLAG_ACTIONS: dict[BulkAction, tuple[dict[str, bool], str]] = {
    BulkAction.activate: ({"is_active": True}, "activated"),
    BulkAction.deactivate: ({"is_active": False}, "deactivated"),
    BulkAction.verify: ({"is_verified": True}, "verified"),
}


class AdminRoleController:
    """Apply administrative actions to many accounts at once.

    Every precondition is checked for the whole batch before the first write. After that,
    targets are processed independently and each gets its own outcome; a failure on one
    target is reported, never rolled back across the others.
    """

    def __init__(
        self,
        repository: Any,
        *,
        provisioner: RoleProvisioner | None = None,
        scorer: ProfileCompletionScorer | None = None,
    ) -> None:
        self._repository = repository
        self._provisioner = provisioner or RoleProvisioner(repository)
        self._scorer = scorer or ProfileCompletionScorer(repository)

    def bulk_action(
        self,
        actor_id: str,
        action: BulkAction,
        target_ids: list[str],
        role: RoleKind | None = None,
    ) -> list[TargetOutcome]:
        if actor_id in target_ids:
            raise SelfModification("Administrators cannot apply bulk actions to their own account")
        if action in (BulkAction.assign_role, BulkAction.revoke_role) and role is None:
            raise RoleRequired(f"A role is required for {action.value}")
        if not target_ids:
            raise ValidationFailed(
                "No target accounts given", details=[FieldError("target_ids", "At least one target is required", "REQUIRED")]
            )
        targets = list(dict.fromkeys(target_ids))

        with translate_store_errors("bulk action"):
            if not self._holds_active_administrator(actor_id):
                raise Forbidden("Administrator role required")
            existing = self._repository.existing_account_ids(targets)
        missing = [target for target in targets if target not in existing]
        if missing:
            raise UnknownTargets(
                "Some target accounts do not exist",
                details=[FieldError("target_ids", target, "NOT_FOUND") for target in missing],
            )

        outcomes = [self._apply(actor_id, action, target, role) for target in targets]
        failed = sum(1 for outcome in outcomes if not outcome.ok)
        logger.info(
            "admin %s applied %s to %d accounts (%d failed)", actor_id, action.value, len(outcomes), failed
        )
        return outcomes

    def summary(self) -> dict[str, Any]:
        """Account counts for the admin overview."""
        count = self._repository.count_accounts
        with translate_store_errors("account summary"):
            return {
                "total": count(AccountPredicate()),
                "active": count(AccountPredicate(is_active=True)),
                "verified": count(AccountPredicate(is_verified=True)),
                "by_role": {role.value: count(AccountPredicate(role=role, is_active=True)) for role in RoleKind},
            }

    def _holds_active_administrator(self, actor_id: str) -> bool:
        actor = self._repository.get_account(actor_id)
        if actor is None or not actor.is_active:
            return False
        return any(
            attachment.role is RoleKind.administrator
            for attachment in self._repository.list_role_attachments(actor_id, active_only=True)
        )

    def _apply(
        self, actor_id: str, action: BulkAction, target: str, role: RoleKind | None
    ) -> TargetOutcome:
        try:
            with translate_store_errors(f"bulk {action.value}"):
                if action in _ACCOUNT_FLAG_ACTIONS:
                    fields, status = _ACCOUNT_FLAG_ACTIONS[action]
                    if self._repository.update_account(target, fields) is None:
                        return TargetOutcome(target, "error", "not_found")
                elif action is BulkAction.assign_role:
                    status = self._assign(actor_id, target, role)
                else:
                    if not self._repository.deactivate_role_attachment(target, role):
                        return self._record(actor_id, action, target, role, TargetOutcome(target, "error", "not_assigned"))
                    status = "role_revoked"
        except DuplicateRole:
            return self._record(actor_id, action, target, role, TargetOutcome(target, "error", "duplicate"))
        except StoreFailure:
            return TargetOutcome(target, "error", "internal")
        if action in (BulkAction.assign_role, BulkAction.revoke_role):
            self._refresh_score(target)
        return self._record(actor_id, action, target, role, TargetOutcome(target, status))

    def _refresh_score(self, target: str) -> None:
        try:
            with translate_store_errors("completion scoring"):
                self._scorer.score(target)
        except StoreFailure:
            logger.warning("completion score for %s left stale", target)

    def _assign(self, actor_id: str, target: str, role: RoleKind) -> str:
        active = self._repository.list_role_attachments(target, active_only=True)
        if any(attachment.role is role for attachment in active):
            raise DuplicateRole(role.value)
        profile = None
        if self._repository.find_role_profile(target, role) is None:
            profile = self._provisioner.default_profile(target, role)
        try:
            self._repository.attach_role(target, role, assigned_by=actor_id, profile=profile)
        except RoleAlreadyActive as exc:
            raise DuplicateRole(role.value) from exc
        return "role_assigned"

    def _record(
        self,
        actor_id: str,
        action: BulkAction,
        target: str,
        role: RoleKind | None,
        outcome: TargetOutcome,
    ) -> TargetOutcome:
        try:
            with translate_store_errors("audit"):
                self._repository.write_audit_event(
                    account_id=target,
                    event_type=f"admin.{action.value}",
                    actor=actor_id,
                    metadata={
                        "role": role.value if role else None,
                        "status": outcome.status,
                        "error": outcome.error,
                    },
                )
        except StoreFailure:
            # the action itself already landed; its outcome must still be reported
            logger.warning("audit entry for %s on %s was not written", action.value, target)
        return outcome
