"""
Tests: role-based field editability and row/project permissions.

Covers:
    - the per-kind field ownership matrix
    - ADMIN edits everything, structural fields never editable
    - the optional title-field lock
    - add / delete / reset / project management gates
    - the mock user directory
"""

import pytest

from sitecontrol.access import (
    ADMIN,
    EXECUTOR,
    PLANNER,
    PROCUREMENT_ROLE,
    ROLES,
    AccessPolicy,
    can_edit_field,
    role_description,
)
from sitecontrol.models import OPERATIONS, PROCUREMENT, get_kind
from sitecontrol.users import find_user

policy = AccessPolicy()


class TestProcurementFields:
    @pytest.mark.parametrize("field", [
        "engineering_item", "scheduled_request_date", "site_organizer",
    ])
    def test_planner_owns_schedule(self, field):
        assert policy.can_edit_field(PLANNER, field, PROCUREMENT)
        assert not policy.can_edit_field(EXECUTOR, field, PROCUREMENT)
        assert not policy.can_edit_field(PROCUREMENT_ROLE, field, PROCUREMENT)

    @pytest.mark.parametrize("field", ["actual_request_date", "remarks"])
    def test_executor_owns_actuals(self, field):
        assert policy.can_edit_field(EXECUTOR, field, PROCUREMENT)
        assert not policy.can_edit_field(PLANNER, field, PROCUREMENT)

    @pytest.mark.parametrize("field", [
        "procurement_organizer", "return_date", "return_reason",
        "resubmission_date", "contractor_confirm_date", "contractor_name",
    ])
    def test_procurement_owns_contracting(self, field):
        assert policy.can_edit_field(PROCUREMENT_ROLE, field, PROCUREMENT)
        assert not policy.can_edit_field(PLANNER, field, PROCUREMENT)
        assert not policy.can_edit_field(EXECUTOR, field, PROCUREMENT)

    def test_every_field_has_exactly_one_non_admin_owner(self):
        spec = get_kind(PROCUREMENT)
        for field in spec.fields:
            owners = [r for r in ROLES if r != ADMIN and policy.can_edit_field(r, field, spec)]
            assert len(owners) == 1, field


class TestOperationsFields:
    def test_planner_owns_plan(self):
        assert policy.editable_fields(PLANNER, OPERATIONS) == {
            "category", "item", "scheduled_start_date", "scheduled_end_date",
        }

    def test_executor_owns_actuals(self):
        assert policy.editable_fields(EXECUTOR, OPERATIONS) == {
            "actual_start_date", "actual_end_date", "remarks",
        }

    def test_procurement_role_is_read_only(self):
        assert policy.editable_fields(PROCUREMENT_ROLE, OPERATIONS) == frozenset()


class TestAdminAndStructure:
    @pytest.mark.parametrize("kind", [PROCUREMENT, OPERATIONS])
    def test_admin_edits_every_stored_field(self, kind):
        assert policy.editable_fields(ADMIN, kind) == frozenset(get_kind(kind).fields)

    @pytest.mark.parametrize("role", ROLES)
    @pytest.mark.parametrize("field", ["id", "project_id"])
    def test_structural_fields_never_editable(self, role, field):
        assert not policy.can_edit_field(role, field, PROCUREMENT)
        assert not policy.can_edit_field(role, field, OPERATIONS)

    def test_unknown_role_and_field(self):
        assert not policy.can_edit_field("VISITOR", "remarks", PROCUREMENT)
        assert not policy.can_edit_field(ADMIN, "variance", PROCUREMENT)

    def test_module_helper_accepts_a_policy(self):
        locked = AccessPolicy(lock_title_field=True)
        assert can_edit_field(PLANNER, "item", OPERATIONS, policy=AccessPolicy())
        assert not can_edit_field(PLANNER, "item", OPERATIONS, policy=locked)


class TestTitleLock:
    def test_locks_title_for_non_admins(self):
        locked = AccessPolicy(lock_title_field=True)
        assert not locked.can_edit_field(PLANNER, "engineering_item", PROCUREMENT)
        assert not locked.can_edit_field(PLANNER, "item", OPERATIONS)
        assert locked.can_edit_field(PLANNER, "scheduled_request_date", PROCUREMENT)
        assert locked.can_edit_field(ADMIN, "engineering_item", PROCUREMENT)


class TestRowAndProjectGates:
    @pytest.mark.parametrize("role,allowed", [
        (ADMIN, True), (PLANNER, True), (EXECUTOR, False), (PROCUREMENT_ROLE, False),
    ])
    def test_add_and_delete_rows(self, role, allowed):
        assert policy.can_add_record(role) is allowed
        assert policy.can_delete_record(role) is allowed
        assert policy.can_manage_projects(role) is allowed

    def test_only_admin_resets_or_deletes_projects(self):
        assert policy.can_reset_project(ADMIN)
        assert policy.can_delete_project(ADMIN)
        for role in (PLANNER, EXECUTOR, PROCUREMENT_ROLE):
            assert not policy.can_reset_project(role)
            assert not policy.can_delete_project(role)


def test_role_descriptions_are_localized():
    assert role_description(ADMIN, "en") == "Administrator (full access)"
    assert role_description(ADMIN, "zh-TW") == "管理員 (完整權限)"
    assert role_description("VISITOR", "en") == "VISITOR"


def test_find_user():
    user = find_user(" ops_user ")
    assert user["role"] == PLANNER
    user["role"] = ADMIN
    assert find_user("ops_user")["role"] == PLANNER
    assert find_user("nobody") is None
