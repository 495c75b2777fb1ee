"""
Traffic-light classification of schedule variance, and progress math.

Two band tables exist because the two record kinds are judged differently:
procurement requests are point events (was the request raised on the day
it was planned), operations items are stage ranges (did the stage finish
when scheduled). ``BANDS_BY_KIND`` is the one place that decides which
table a record kind uses.
"""

import math
from dataclasses import dataclass, field
from datetime import date

from sitecontrol import config
from sitecontrol.datemath import days_until, parse_date, variance_days
from sitecontrol.models import (
    OPERATIONS,
    PROCUREMENT,
    STAGES,
    TERMINAL_STAGE,
    get_kind,
    stage_of,
)


@dataclass(frozen=True)
class Band:
    key: str
    # lowest variance (inclusive) that still falls in this band; None = no floor
    floor: int | None
    color: str
    labels: dict = field(default_factory=dict, compare=False, hash=False)

    def label(self, locale=None):
        loc = locale or config.LOCALE
        return self.labels.get(loc) or self.labels.get("en") or self.key


NO_DATA = Band("no_data", None, "#CBD5E0", {"zh-TW": "無資料", "en": "No data"})


class BandTable:
    """Ordered bands evaluated top-down; first band with ``floor <= variance`` wins."""

    def __init__(self, name, bands):
        if not bands or bands[-1].floor is not None:
            raise ValueError(f"{name}: last band must be open-ended")
        floors = [b.floor for b in bands[:-1]]
        if floors != sorted(floors, reverse=True):
            raise ValueError(f"{name}: band floors must be descending")
        self.name = name
        self.bands = tuple(bands)

    def classify(self, variance):
        if variance is None:
            return NO_DATA
        for band in self.bands:
            if band.floor is None or variance >= band.floor:
                return band
        return self.bands[-1]

    def keys(self):
        return [b.key for b in self.bands]

    def __iter__(self):
        return iter(self.bands)


# ─────────────────────────────────────────────────────────────────────────────
#  BAND TABLES
# ─────────────────────────────────────────────────────────────────────────────
POINT_EVENT_BANDS = BandTable("point-event", [
    Band("normal", 0, "#00CC66",
         {"zh-TW": "正常", "en": "On schedule"}),
    Band("warning", -7, "#F6C343",
         {"zh-TW": "警示 (黃燈)", "en": "Warning (yellow)"}),
    Band("escalate_site", -30, "#FFA500",
         {"zh-TW": "延誤需通知 (橘燈)", "en": "Delayed, notify site (orange)"}),
    Band("escalate_management", None, "#FF4B4B",
         {"zh-TW": "嚴重延誤 (紅燈)", "en": "Severe delay, escalate (red)"}),
])

RANGE_BANDS = BandTable("range", [
    Band("normal", 0, "#00CC66",
         {"zh-TW": "正常", "en": "On schedule"}),
    Band("minor_delay", -10, "#F6C343",
         {"zh-TW": "輕微落後 (黃)", "en": "Slightly behind (yellow)"}),
    Band("delay", -29, "#FFA500",
         {"zh-TW": "警示落後 (橘)", "en": "Behind (orange)"}),
    Band("critical_delay", None, "#FF4B4B",
         {"zh-TW": "嚴重落後 (紅)", "en": "Critically behind (red)"}),
])

BANDS_BY_KIND = {
    PROCUREMENT: POINT_EVENT_BANDS,
    OPERATIONS: RANGE_BANDS,
}


def band_table(kind):
    return BANDS_BY_KIND[get_kind(kind).name]


def severity_for(kind, variance):
    return band_table(kind).classify(variance)


def record_variance(kind, record):
    spec = get_kind(kind)
    return variance_days(record.get(spec.scheduled_field), record.get(spec.actual_field))


def record_severity(kind, record):
    return severity_for(kind, record_variance(kind, record))


# ─────────────────────────────────────────────────────────────────────────────
#  PROGRESS
# ─────────────────────────────────────────────────────────────────────────────
def _round_half_up(x):
    return int(math.floor(x + 0.5))


def range_progress(start, end, scheduled_end, today=None):
    """
    Percent of a stage's window elapsed as of ``today`` (0-100).

    The window runs from ``start`` to ``end`` when the stage has finished,
    otherwise to ``scheduled_end``. A zero-length or inverted window counts
    as done.
    """
    today = today or date.today()
    start_d = parse_date(start)
    if start_d is None or today < start_d:
        return 0
    target = parse_date(end) or parse_date(scheduled_end)
    if target is None:
        return 0
    total = (target - start_d).days
    if total <= 0:
        return 100
    elapsed = (today - start_d).days
    pct = _round_half_up(100.0 * elapsed / total)
    return max(0, min(100, pct))


def record_progress(record, today=None):
    return range_progress(
        record.get("actual_start_date"),
        record.get("actual_end_date"),
        record.get("scheduled_end_date"),
        today=today,
    )


def _progress_target(records):
    terminal = [r for r in records if stage_of(r.get("category")) == TERMINAL_STAGE]
    if terminal:
        return terminal[-1]
    return records[-1] if records else None


def project_progress(records, today=None):
    """
    Whole-project progress from one project's operations records.

    Start is the earliest actual start of any item. The target is the last
    Handover Inspection item (or the last item when there is none). Only an
    actual end on the target reports 100; schedule math alone stops at 99.
    """
    today = today or date.today()
    starts = [d for d in (parse_date(r.get("actual_start_date")) for r in records) if d]
    if not starts:
        return 0
    project_start = min(starts)

    target = _progress_target(records)
    if target is None:
        return 0
    if parse_date(target.get("actual_end_date")):
        return 100

    target_end = parse_date(target.get("scheduled_end_date"))
    if target_end is None:
        return 0
    total = (target_end - project_start).days
    if total <= 0:
        return 0
    elapsed = (today - project_start).days
    if elapsed < 0:
        return 0
    pct = min(100.0 * elapsed / total, 99.0)
    return max(0, _round_half_up(pct))


# ─────────────────────────────────────────────────────────────────────────────
#  DASHBOARD COUNTERS
# ─────────────────────────────────────────────────────────────────────────────
def _band_counts(kind, records):
    table = band_table(kind)
    counts = {key: 0 for key in table.keys()}
    counts[NO_DATA.key] = 0
    for r in records:
        counts[record_severity(kind, r).key] += 1
    return counts


def procurement_summary(records, today=None):
    today = today or date.today()
    delayed = 0
    upcoming = 0
    completed = 0
    for r in records:
        if r.get("actual_request_date"):
            completed += 1
        v = record_variance(PROCUREMENT, r)
        if v is not None and v < 0:
            delayed += 1
        if r.get("scheduled_request_date") and not r.get("actual_request_date"):
            ahead = days_until(r["scheduled_request_date"], today)
            if ahead is not None and 0 <= ahead <= config.UPCOMING_WINDOW_DAYS:
                upcoming += 1
    return {
        "total": len(records),
        "completed": completed,
        "delayed": delayed,
        "upcoming": upcoming,
        "bands": _band_counts(PROCUREMENT, records),
    }


def operations_summary(records, today=None):
    stage_counts = {stage: 0 for stage in STAGES}
    uncategorized = 0
    for r in records:
        stage = stage_of(r.get("category"))
        if stage in stage_counts:
            stage_counts[stage] += 1
        else:
            uncategorized += 1
    return {
        "total": len(records),
        "progress": project_progress(records, today=today),
        "bands": _band_counts(OPERATIONS, records),
        "stages": stage_counts,
        "uncategorized": uncategorized,
    }
