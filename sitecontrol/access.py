"""
Who may edit what.

``FIELD_OWNERS`` is the single table behind every editability question the
UI or the store asks; nothing else keeps its own list of field names per
role. A write that the table denies is dropped silently by the caller.
"""

from dataclasses import dataclass

from sitecontrol import config
from sitecontrol.models import OPERATIONS, PROCUREMENT, STRUCTURAL_FIELDS, get_kind

ADMIN = "ADMIN"
PLANNER = "PLANNER"
EXECUTOR = "EXECUTOR"
PROCUREMENT_ROLE = "PROCUREMENT"

ROLES = (ADMIN, PLANNER, EXECUTOR, PROCUREMENT_ROLE)

ROLE_DESCRIPTIONS = {
    "zh-TW": {
        ADMIN: "管理員 (完整權限)",
        PLANNER: "工地排程 (採購部)",
        EXECUTOR: "工地執行 (工地單位)",
        PROCUREMENT_ROLE: "採購發包 (採購部)",
    },
    "en": {
        ADMIN: "Administrator (full access)",
        PLANNER: "Site planning",
        EXECUTOR: "Site execution",
        PROCUREMENT_ROLE: "Procurement & contracting",
    },
}

FIELD_OWNERS = {
    PROCUREMENT: {
        PLANNER: frozenset({"engineering_item", "scheduled_request_date", "site_organizer"}),
        EXECUTOR: frozenset({"actual_request_date", "remarks"}),
        PROCUREMENT_ROLE: frozenset({
            "procurement_organizer",
            "return_date",
            "return_reason",
            "resubmission_date",
            "contractor_confirm_date",
            "contractor_name",
        }),
    },
    OPERATIONS: {
        PLANNER: frozenset({"category", "item", "scheduled_start_date", "scheduled_end_date"}),
        EXECUTOR: frozenset({"actual_start_date", "actual_end_date", "remarks"}),
        PROCUREMENT_ROLE: frozenset(),
    },
}

ROW_MANAGERS = frozenset({ADMIN, PLANNER})
PROJECT_MANAGERS = frozenset({ADMIN, PLANNER})


@dataclass(frozen=True)
class AccessPolicy:
    # Lock the record's display name (engineering item / item) for all non-admins
    lock_title_field: bool = False

    def can_edit_field(self, role, field, kind=PROCUREMENT):
        spec = get_kind(kind)
        if field in STRUCTURAL_FIELDS or field not in spec.fields:
            return False
        if role == ADMIN:
            return True
        if self.lock_title_field and field == spec.title_field:
            return False
        return field in FIELD_OWNERS[spec.name].get(role, frozenset())

    def editable_fields(self, role, kind=PROCUREMENT):
        spec = get_kind(kind)
        return frozenset(f for f in spec.fields if self.can_edit_field(role, f, spec))

    def can_add_record(self, role):
        return role in ROW_MANAGERS

    def can_delete_record(self, role):
        return role in ROW_MANAGERS

    def can_reset_project(self, role):
        return role == ADMIN

    def can_manage_projects(self, role):
        return role in PROJECT_MANAGERS

    def can_delete_project(self, role):
        return role == ADMIN


DEFAULT_POLICY = AccessPolicy(lock_title_field=config.LOCK_TITLE_FIELD)


def can_edit_field(role, field, kind=PROCUREMENT, policy=None):
    return (policy or DEFAULT_POLICY).can_edit_field(role, field, kind)


def can_add_record(role, policy=None):
    return (policy or DEFAULT_POLICY).can_add_record(role)


def can_delete_record(role, policy=None):
    return (policy or DEFAULT_POLICY).can_delete_record(role)


def role_description(role, locale=None):
    return ROLE_DESCRIPTIONS.get(locale or config.LOCALE, ROLE_DESCRIPTIONS["en"]).get(role, role)
