"""
Derived table views shared by the procurement and operations screens.

One builder serves both record kinds: it takes the stored records of a
partition and adds the read-side columns (durations, variance, severity,
progress, date problems) with pandas. The same module turns edits made in
the Streamlit grid back into gated store updates.
"""

from datetime import date

import pandas as pd

from sitecontrol import config
from sitecontrol.classification import record_progress, severity_for
from sitecontrol.datemath import duration_days, is_valid_date_text, variance_days
from sitecontrol.models import (
    OPERATIONS,
    PROCUREMENT,
    STAGES,
    UNCATEGORIZED,
    get_kind,
    stage_label,
    stage_of,
)

COLUMN_LABELS = {
    "zh-TW": {
        PROCUREMENT: {
            "engineering_item": "工程項目",
            "scheduled_request_date": "預定提出時間",
            "actual_request_date": "實際提出時間",
            "variance": "時程差異",
            "status": "燈號狀態",
            "site_organizer": "工地主辦",
            "procurement_organizer": "採發主辦",
            "return_date": "退件日期",
            "return_reason": "退件原因",
            "resubmission_date": "重新提送日期",
            "contractor_confirm_date": "確認承攬商日期",
            "contractor_name": "廠商",
            "remarks": "備註",
            "date_issues": "日期格式錯誤",
        },
        OPERATIONS: {
            "category": "區分",
            "item": "工程項目",
            "scheduled_start_date": "預定開始",
            "scheduled_end_date": "預定完成",
            "scheduled_duration": "預定工期",
            "actual_start_date": "實際開始",
            "actual_end_date": "實際完成",
            "actual_duration": "實際工期",
            "variance": "差異天數",
            "status": "燈號狀態",
            "progress": "工期百分比",
            "remarks": "備註",
            "date_issues": "日期格式錯誤",
        },
    },
    "en": {
        PROCUREMENT: {
            "engineering_item": "Engineering item",
            "scheduled_request_date": "Scheduled request",
            "actual_request_date": "Actual request",
            "variance": "Variance (days)",
            "status": "Status",
            "site_organizer": "Site organizer",
            "procurement_organizer": "Procurement organizer",
            "return_date": "Return date",
            "return_reason": "Return reason",
            "resubmission_date": "Resubmission date",
            "contractor_confirm_date": "Contractor confirmed",
            "contractor_name": "Contractor",
            "remarks": "Remarks",
            "date_issues": "Invalid dates",
        },
        OPERATIONS: {
            "category": "Stage",
            "item": "Item",
            "scheduled_start_date": "Scheduled start",
            "scheduled_end_date": "Scheduled end",
            "scheduled_duration": "Scheduled duration",
            "actual_start_date": "Actual start",
            "actual_end_date": "Actual end",
            "actual_duration": "Actual duration",
            "variance": "Variance (days)",
            "status": "Status",
            "progress": "Progress %",
            "remarks": "Remarks",
            "date_issues": "Invalid dates",
        },
    },
}


def column_labels(kind, locale=None):
    labels = COLUMN_LABELS.get(locale or config.LOCALE, COLUMN_LABELS["en"])
    return labels[get_kind(kind).name]


def _date_issues(spec, record):
    return ", ".join(f for f in spec.date_fields if not is_valid_date_text(record.get(f)))


def derive_row(kind, record, today=None, locale=None):
    """Stored fields of one record plus its read-side columns."""
    spec = get_kind(kind)
    today = today or date.today()
    variance = variance_days(record.get(spec.scheduled_field), record.get(spec.actual_field))
    band = severity_for(spec, variance)
    row = {"id": record["id"]}
    row.update({f: record.get(f, "") for f in spec.fields})
    row["variance"] = variance
    row["status"] = band.label(locale)
    row["status_key"] = band.key
    row["color"] = band.color
    if spec.name == OPERATIONS:
        row["stage"] = stage_of(record.get("category"))
        row["scheduled_duration"] = duration_days(record.get("scheduled_start_date"), record.get("scheduled_end_date"))
        row["actual_duration"] = duration_days(record.get("actual_start_date"), record.get("actual_end_date"))
        row["progress"] = record_progress(record, today=today)
    row["date_issues"] = _date_issues(spec, record)
    return row


def build_table(kind, records, today=None, locale=None):
    """
    DataFrame of a partition with derived columns, in stored order.

    Integer columns that may be missing (variance, durations) use pandas'
    nullable ``Int64`` so empty cells stay empty instead of becoming NaN.
    """
    spec = get_kind(kind)
    rows = [derive_row(spec, r, today=today, locale=locale) for r in records]
    columns = ["id", *spec.fields, "variance", "status", "status_key", "color"]
    if spec.name == OPERATIONS:
        columns += ["stage", "scheduled_duration", "actual_duration", "progress"]
    columns.append("date_issues")
    df = pd.DataFrame(rows, columns=columns)
    for col in ("variance", "scheduled_duration", "actual_duration"):
        if col in df.columns:
            df[col] = df[col].astype("Int64")
    return df


def group_by_stage(records):
    """Records grouped by stage in the fixed stage order; unknown categories last."""
    groups = {stage: [] for stage in STAGES}
    extra = []
    for r in records:
        stage = stage_of(r.get("category"))
        if stage == UNCATEGORIZED:
            extra.append(r)
        else:
            groups[stage].append(r)
    if extra:
        groups[UNCATEGORIZED] = extra
    return groups


def stage_options(locale=None):
    """(stored value, display name) pairs for the stage picker, blank first."""
    return [("", stage_label(UNCATEGORIZED, locale))] + [(s, stage_label(s, locale)) for s in STAGES]


# ─────────────────────────────────────────────────────────────────────────────
#  GRID EDITS
# ─────────────────────────────────────────────────────────────────────────────
def _cell_text(value):
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    if isinstance(value, (date, pd.Timestamp)):
        return value.strftime("%Y-%m-%d")
    return str(value)


def apply_grid_edits(store, kind, role, before, after):
    """
    Push cell changes from an edited grid into the store.

    ``before`` and ``after`` are frames indexed by record id holding stored
    fields. Each changed cell becomes one ``store.update`` call, so the
    access policy decides per cell; denied cells are dropped. Returns the
    number of cells written.
    """
    spec = get_kind(kind)
    written = 0
    for record_id in after.index:
        if record_id not in before.index:
            continue
        for field in spec.fields:
            if field not in after.columns:
                continue
            old = _cell_text(before.at[record_id, field])
            new = _cell_text(after.at[record_id, field])
            if old != new and store.update(spec, record_id, field, new, role):
                written += 1
    return written
