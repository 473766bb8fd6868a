from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from role_schemas import RoleKind

from identity_roles.domain.errors import Forbidden, RolePreconditionMissing, ValidationFailed
from identity_roles.domain.profiles import ContentEditorProfile, CustomerProfile, ServiceProviderProfile
from identity_roles.domain.provisioner import RoleProvisioner

NOW = datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def provisioner(repository) -> RoleProvisioner:
    return RoleProvisioner(repository, clock=lambda: NOW)


def _provider_payload(**overrides):
    payload = {
        "license_number": " L-100 ",
        "license_expiry": (NOW + timedelta(days=30)).isoformat(),
        "languages": ["en", " ", "zh "],
    }
    payload.update(overrides)
    return payload


def test_customer_profile_created_with_defaults(provisioner, repository):
    account = repository.add_account("c@x.com", RoleKind.customer)

    profile = provisioner.provision(account.account_id, RoleKind.customer, None)

    assert isinstance(profile, CustomerProfile)
    assert profile.loyalty_score == 0
    assert profile.membership_tier == "basic"
    assert repository.find_role_profile(account.account_id, RoleKind.customer) == profile


def test_customer_provision_is_a_noop_when_present(provisioner, repository):
    account = repository.add_account("c@x.com", RoleKind.customer)
    first = provisioner.provision(account.account_id, RoleKind.customer, None)
    repository.profiles[(account.account_id, RoleKind.customer)] = replace(first, loyalty_score=40)

    again = provisioner.provision(account.account_id, RoleKind.customer, None)

    assert again.loyalty_score == 40


def test_provider_profile_is_cleaned_and_unapproved(provisioner, repository):
    account = repository.add_account("p@x.com", RoleKind.service_provider)

    profile = provisioner.provision(
        account.account_id, RoleKind.service_provider, _provider_payload(is_approved=True)
    )

    assert isinstance(profile, ServiceProviderProfile)
    assert profile.license_number == "L-100"
    assert profile.languages == ["en", "zh"]
    assert profile.is_approved is False


def test_naive_expiry_is_read_as_utc(provisioner, repository):
    account = repository.add_account("p@x.com", RoleKind.service_provider)
    naive = (NOW + timedelta(hours=1)).replace(tzinfo=None).isoformat()

    profile = provisioner.provision(account.account_id, RoleKind.service_provider, _provider_payload(license_expiry=naive))

    assert profile.license_expiry == NOW + timedelta(hours=1)


@pytest.mark.parametrize("offset", [timedelta(0), timedelta(seconds=-1)])
def test_provider_expiry_must_be_strictly_future(provisioner, repository, offset):
    account = repository.add_account("p@x.com", RoleKind.service_provider)
    payload = _provider_payload(license_expiry=(NOW + offset).isoformat())

    with pytest.raises(ValidationFailed) as excinfo:
        provisioner.provision(account.account_id, RoleKind.service_provider, payload)

    assert excinfo.value.details[0].code == "EXPIRED"
    assert repository.find_role_profile(account.account_id, RoleKind.service_provider) is None


def test_provider_requires_license(provisioner, repository):
    account = repository.add_account("p@x.com", RoleKind.service_provider)
    with pytest.raises(RolePreconditionMissing):
        provisioner.provision(account.account_id, RoleKind.service_provider, {"languages": ["en"]})


def test_provider_languages_must_not_be_blank(provisioner, repository):
    account = repository.add_account("p@x.com", RoleKind.service_provider)
    with pytest.raises(ValidationFailed) as excinfo:
        provisioner.provision(account.account_id, RoleKind.service_provider, _provider_payload(languages=["  "]))
    assert excinfo.value.details[0].field == "role_data.languages"


def test_provider_update_keeps_moderation_outcome(provisioner, repository):
    account = repository.add_account("p@x.com", RoleKind.service_provider)
    created = provisioner.provision(account.account_id, RoleKind.service_provider, _provider_payload())
    # an out-of-band moderator approves the provider
    repository.profiles[(account.account_id, RoleKind.service_provider)] = replace(created, is_approved=True)

    provisioner.provision(
        account.account_id,
        RoleKind.service_provider,
        _provider_payload(license_number="L-200", is_approved=False, emergency_contact="+852 1234 5678"),
    )

    stored = repository.find_role_profile(account.account_id, RoleKind.service_provider)
    assert stored.license_number == "L-200"
    assert stored.emergency_contact == "+852 1234 5678"
    assert stored.is_approved is True


def test_editor_update_needs_no_invitation_and_keeps_permissions(provisioner, repository):
    account = repository.add_account("e@x.com", RoleKind.content_editor)
    provisioner.provision(account.account_id, RoleKind.content_editor, {"invitation_code": "INV"})
    key = (account.account_id, RoleKind.content_editor)
    repository.profiles[key] = replace(repository.profiles[key], permissions=["publish"])

    updated = provisioner.provision(
        account.account_id,
        RoleKind.content_editor,
        {"bio": "Travel writer", "specializations": ["food"], "permissions": ["admin"]},
    )

    assert updated.bio == "Travel writer"
    stored = repository.find_role_profile(account.account_id, RoleKind.content_editor)
    assert isinstance(stored, ContentEditorProfile)
    assert stored.permissions == ["publish"]
    assert stored.specializations == ["food"]


def test_profile_requires_active_role(provisioner, repository):
    account = repository.add_account("c@x.com", RoleKind.customer)
    with pytest.raises(Forbidden):
        provisioner.provision(account.account_id, RoleKind.content_editor, {"invitation_code": "INV"})

    repository.deactivate_role_attachment(account.account_id, RoleKind.customer)
    with pytest.raises(Forbidden):
        provisioner.provision(account.account_id, RoleKind.customer, None)


def test_administrators_have_no_profile(provisioner, repository):
    account = repository.add_account("admin@x.com", RoleKind.administrator)
    with pytest.raises(ValidationFailed):
        provisioner.provision(account.account_id, RoleKind.administrator, None)
    assert provisioner.plan(account.account_id, RoleKind.administrator, {"anything": 1}, None) is None


def test_plan_reuses_a_retained_profile(provisioner):
    retained = CustomerProfile(account_id="acc-1", loyalty_score=12)
    assert provisioner.plan("acc-1", RoleKind.customer, None, retained) is None


def test_default_profiles_per_role(provisioner):
    assert isinstance(provisioner.default_profile("acc-1", RoleKind.customer), CustomerProfile)
    editor = provisioner.default_profile("acc-1", RoleKind.content_editor)
    assert isinstance(editor, ContentEditorProfile)
    assert editor.permissions == [] and editor.is_approved is False
    assert provisioner.default_profile("acc-1", RoleKind.service_provider) is None
    assert provisioner.default_profile("acc-1", RoleKind.administrator) is None
