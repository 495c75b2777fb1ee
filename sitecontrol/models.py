"""
Record kinds tracked by the portal and the field layout of each.

Records are plain dicts so they serialize straight to the JSON snapshots.
Derived values (variance, duration, severity, progress) are never stored.
"""

from dataclasses import dataclass

from sitecontrol import config

PROCUREMENT = "procurement"
OPERATIONS = "operations"
PROJECTS = "projects"

# ─────────────────────────────────────────────────────────────────────────────
#  STAGES
# ─────────────────────────────────────────────────────────────────────────────
STAGES = (
    "Design",
    "Preliminary Works",
    "Earthworks",
    "Structural",
    "Façade",
    "Interior",
    "M&E",
    "Occupancy Permit",
    "Handover Inspection",
)
TERMINAL_STAGE = STAGES[-1]
UNCATEGORIZED = "Uncategorized"

STAGE_NAMES = {
    "zh-TW": {
        "Design": "設計階段",
        "Preliminary Works": "假設工程",
        "Earthworks": "地工工程",
        "Structural": "結構工程",
        "Façade": "外牆工程",
        "Interior": "內裝工程",
        "M&E": "設備工程",
        "Occupancy Permit": "使用執照",
        "Handover Inspection": "交屋驗收",
        UNCATEGORIZED: "未分類項目",
    },
    "en": {stage: stage for stage in STAGES + (UNCATEGORIZED,)},
}

# Older snapshots stored the zh-TW stage names as the category value
_STAGE_BY_LOCAL_NAME = {name: key for key, name in STAGE_NAMES["zh-TW"].items() if key != UNCATEGORIZED}


def stage_of(category):
    """Return the stage key for a stored category, or UNCATEGORIZED."""
    if category in STAGES:
        return category
    return _STAGE_BY_LOCAL_NAME.get(category, UNCATEGORIZED)


def stage_label(stage, locale=None):
    return STAGE_NAMES.get(locale or config.LOCALE, STAGE_NAMES["en"]).get(stage, stage)


# ─────────────────────────────────────────────────────────────────────────────
#  RECORD KINDS
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class RecordKind:
    name: str
    fields: tuple
    date_fields: tuple
    title_field: str
    # (scheduled, actual) pair that drives variance and severity
    scheduled_field: str
    actual_field: str


PROCUREMENT_KIND = RecordKind(
    name=PROCUREMENT,
    fields=(
        "engineering_item",
        "scheduled_request_date",
        "actual_request_date",
        "site_organizer",
        "procurement_organizer",
        "return_date",
        "return_reason",
        "resubmission_date",
        "contractor_confirm_date",
        "contractor_name",
        "remarks",
    ),
    date_fields=(
        "scheduled_request_date",
        "actual_request_date",
        "return_date",
        "resubmission_date",
        "contractor_confirm_date",
    ),
    title_field="engineering_item",
    scheduled_field="scheduled_request_date",
    actual_field="actual_request_date",
)

OPERATIONS_KIND = RecordKind(
    name=OPERATIONS,
    fields=(
        "category",
        "item",
        "scheduled_start_date",
        "scheduled_end_date",
        "actual_start_date",
        "actual_end_date",
        "remarks",
    ),
    date_fields=(
        "scheduled_start_date",
        "scheduled_end_date",
        "actual_start_date",
        "actual_end_date",
    ),
    title_field="item",
    scheduled_field="scheduled_end_date",
    actual_field="actual_end_date",
)

KINDS = {
    PROCUREMENT: PROCUREMENT_KIND,
    OPERATIONS: OPERATIONS_KIND,
}

STRUCTURAL_FIELDS = ("id", "project_id")
PROJECT_FIELDS = ("id", "name", "created_at")


def get_kind(kind):
    if isinstance(kind, RecordKind):
        return kind
    try:
        return KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown record kind: {kind!r}") from None


def blank_record(kind, record_id, project_id):
    spec = get_kind(kind)
    row = {"id": record_id, "project_id": project_id}
    row.update({field: "" for field in spec.fields})
    return row


# ─────────────────────────────────────────────────────────────────────────────
#  SNAPSHOT MIGRATION
# ─────────────────────────────────────────────────────────────────────────────
LEGACY_KEYS = {
    "projectId": "project_id",
    "createdAt": "created_at",
    "engineeringItem": "engineering_item",
    "scheduledRequestDate": "scheduled_request_date",
    "actualRequestDate": "actual_request_date",
    "siteOrganizer": "site_organizer",
    "procurementOrganizer": "procurement_organizer",
    "returnDate": "return_date",
    "returnReason": "return_reason",
    "resubmissionDate": "resubmission_date",
    "contractorConfirmDate": "contractor_confirm_date",
    "contractorName": "contractor_name",
    "scheduledStartDate": "scheduled_start_date",
    "scheduledEndDate": "scheduled_end_date",
    "actualStartDate": "actual_start_date",
    "actualEndDate": "actual_end_date",
}


def _rename_legacy(row):
    out = {}
    for key, value in row.items():
        new_key = LEGACY_KEYS.get(key, key)
        # a snake_case key already present wins over its legacy twin
        if new_key in out and key != new_key:
            continue
        out[new_key] = value
    return out


def _as_text(value):
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def migrate_record(kind, row):
    """
    Bring a stored record up to the current field layout.

    Missing fields become "", a missing project id falls back to the
    default project, camelCase keys from older snapshots are renamed and
    keys this version does not know are kept untouched.
    """
    spec = get_kind(kind)
    out = _rename_legacy(row)
    for field in spec.fields:
        out[field] = _as_text(out.get(field))
    if not out.get("project_id"):
        out["project_id"] = config.DEFAULT_PROJECT_ID
    if spec.name == OPERATIONS and out["category"]:
        stage = stage_of(out["category"])
        if stage != UNCATEGORIZED:
            out["category"] = stage
    return out


def migrate_project(row):
    out = _rename_legacy(row)
    out["name"] = _as_text(out.get("name"))
    out["created_at"] = _as_text(out.get("created_at"))
    return out
