"""
CSV export of the current project's records.

Every cell is quoted and embedded quotes are doubled (RFC 4180). The bytes
start with a UTF-8 BOM so spreadsheet tools pick the right encoding for the
Chinese headers and names.
"""

import csv
import logging
import re
from datetime import date

from sitecontrol import config
from sitecontrol.models import OPERATIONS, PROCUREMENT, get_kind, stage_label
from sitecontrol.tables import build_table, column_labels

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = {
    PROCUREMENT: (
        "engineering_item",
        "scheduled_request_date",
        "actual_request_date",
        "variance",
        "status",
        "site_organizer",
        "procurement_organizer",
        "return_date",
        "return_reason",
        "resubmission_date",
        "contractor_confirm_date",
        "contractor_name",
        "remarks",
    ),
    OPERATIONS: (
        "category",
        "item",
        "scheduled_start_date",
        "scheduled_end_date",
        "scheduled_duration",
        "actual_start_date",
        "actual_end_date",
        "actual_duration",
        "variance",
        "status",
        "progress",
        "remarks",
    ),
}

FILENAME_SUFFIX = {
    "zh-TW": {PROCUREMENT: "", OPERATIONS: "_營運管理控制表"},
    "en": {PROCUREMENT: "_procurement", OPERATIONS: "_operations"},
}

_UNSAFE_FILENAME = re.compile(r'[\\/:*?"<>|\r\n\t]+')


def format_variance(variance):
    """``+N`` when early, bare number otherwise, blank when unknown."""
    if variance is None:
        return ""
    return f"+{variance}" if variance > 0 else str(variance)


def _format_int(value):
    return "" if value is None else str(value)


def export_filename(kind, project_name, today=None, locale=None):
    spec = get_kind(kind)
    loc = locale or config.LOCALE
    today = today or date.today()
    safe_name = _UNSAFE_FILENAME.sub("_", (project_name or "").strip()) or "project"
    suffix = FILENAME_SUFFIX.get(loc, FILENAME_SUFFIX["en"])[spec.name]
    return f"{safe_name}{suffix}_{today.isoformat()}.csv"


def export_frame(kind, records, today=None, locale=None):
    """The export columns, already rendered as text, in the fixed order."""
    spec = get_kind(kind)
    df = build_table(spec, records, today=today, locale=locale).astype(object)
    df = df.where(df.notna(), None)
    df["variance"] = df["variance"].map(format_variance)
    if spec.name == OPERATIONS:
        df["category"] = df["category"].map(lambda c: stage_label(c, locale) if c else "")
        df["scheduled_duration"] = df["scheduled_duration"].map(_format_int)
        df["actual_duration"] = df["actual_duration"].map(_format_int)
        df["progress"] = df["progress"].map(lambda p: f"{p}%")
    cols = list(EXPORT_COLUMNS[spec.name])
    labels = column_labels(spec, locale)
    return df[cols].rename(columns=labels)


def export_csv(kind, records, project_name, today=None, locale=None):
    """
    Serialize one project's records for download.

    Returns ``(filename, data)`` where data is the BOM-prefixed UTF-8 CSV.
    """
    filename = export_filename(kind, project_name, today=today, locale=locale)
    frame = export_frame(kind, records, today=today, locale=locale)
    text = frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    logger.info("Exported %d %s rows to %s", len(frame), get_kind(kind).name, filename)
    return filename, text.encode("utf-8-sig")
