"""
Project and record collections, partitioned by project id.

The store keeps every project's records in memory and writes the affected
snapshot back through its storage port after each mutation (write-through,
one JSON document per snapshot). Reads never fail the caller: a missing
snapshot seeds defaults and an unreadable one is logged and replaced by
defaults in memory.
"""

import json
import logging
import os
import uuid
from datetime import date, datetime

from sitecontrol import config
from sitecontrol.access import DEFAULT_POLICY
from sitecontrol.models import (
    KINDS,
    PROCUREMENT,
    PROJECTS,
    blank_record,
    get_kind,
    migrate_project,
    migrate_record,
)

logger = logging.getLogger(__name__)

SAMPLE_PROCUREMENT = (
    {
        "id": "1",
        "project_id": config.DEFAULT_PROJECT_ID,
        "engineering_item": "鋼結構工程",
        "scheduled_request_date": "2023-10-01",
        "actual_request_date": "2023-10-05",
        "site_organizer": "王小明",
        "procurement_organizer": "李大華",
        "remarks": "",
    },
    {
        "id": "2",
        "project_id": config.DEFAULT_PROJECT_ID,
        "engineering_item": "混凝土澆置",
        "scheduled_request_date": "2023-10-15",
        "actual_request_date": "2023-10-10",
        "site_organizer": "王小明",
        "procurement_organizer": "陳採購",
        "remarks": "需優先處理",
    },
)


# ─────────────────────────────────────────────────────────────────────────────
#  STORAGE PORTS
# ─────────────────────────────────────────────────────────────────────────────
class JsonFileStorage:
    """One ``<name>.json`` file per snapshot under ``data_dir``."""

    def __init__(self, data_dir=None):
        self.data_dir = data_dir or config.DATA_DIR

    def path_for(self, name):
        return os.path.join(self.data_dir, f"{name}.json")

    def read(self, name):
        path = self.path_for(name)
        if not os.path.exists(path):
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def write(self, name, rows):
        os.makedirs(self.data_dir, exist_ok=True)
        path = self.path_for(name)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(rows, f, indent=2, ensure_ascii=False, default=str)
        os.replace(tmp, path)


class MemoryStorage:
    """Keeps serialized snapshots in a dict; used by tests."""

    def __init__(self, blobs=None):
        self.blobs = dict(blobs or {})
        self.writes = 0

    def read(self, name):
        if name not in self.blobs:
            return None
        return json.loads(self.blobs[name])

    def write(self, name, rows):
        self.blobs[name] = json.dumps(rows, ensure_ascii=False)
        self.writes += 1


# ─────────────────────────────────────────────────────────────────────────────
#  RECORD STORE
# ─────────────────────────────────────────────────────────────────────────────
def _new_id():
    return str(uuid.uuid4())


def _as_stored_value(value):
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return value if isinstance(value, str) else str(value)


class RecordStore:

    def __init__(self, storage, policy=None):
        self.storage = storage
        self.policy = policy or DEFAULT_POLICY
        self.projects = []
        self.records = {kind: [] for kind in KINDS}
        self.last_write_error = None
        self.load()

    # ── loading ──────────────────────────────────────────────────────────
    def load(self):
        self.projects = self._load_projects()
        for kind in KINDS:
            self.records[kind] = self._load_records(kind)

    def _read_snapshot(self, name):
        try:
            rows = self.storage.read(name)
        except (OSError, ValueError) as exc:
            logger.warning("Snapshot %r unreadable, using defaults: %s", name, exc)
            return None
        if rows is None:
            return None
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            logger.warning("Snapshot %r is not a list of records, using defaults", name)
            return None
        return rows

    def _load_projects(self):
        rows = self._read_snapshot(PROJECTS)
        if rows is None:
            return [{
                "id": config.DEFAULT_PROJECT_ID,
                "name": config.DEFAULT_PROJECT_NAME,
                "created_at": datetime.now().isoformat(timespec="seconds"),
            }]
        projects = []
        changed = False
        for row in rows:
            project = migrate_project(row)
            if not project.get("id"):
                project["id"] = _new_id()
            changed = changed or project != row
            projects.append(project)
        if changed:
            self._flush(PROJECTS, projects)
        return projects

    def _load_records(self, kind):
        rows = self._read_snapshot(kind)
        if rows is None:
            if kind == PROCUREMENT:
                return [migrate_record(kind, dict(r)) for r in SAMPLE_PROCUREMENT]
            return []
        records = []
        changed = False
        for row in rows:
            record = migrate_record(kind, row)
            if not record.get("id"):
                record["id"] = _new_id()
            # migration backfill for snapshots written by older versions
            changed = changed or record != row
            records.append(record)
        if changed:
            logger.info("Migrated %s snapshot to current field layout", kind)
            self._flush(kind, records)
        return records

    # ── persistence ──────────────────────────────────────────────────────
    def _flush(self, name, rows=None):
        if rows is None:
            rows = self.projects if name == PROJECTS else self.records[name]
        try:
            self.storage.write(name, rows)
            self.last_write_error = None
        except (OSError, TypeError, ValueError):
            logger.exception("Could not persist %s snapshot", name)
            self.last_write_error = name

    # ── projects ─────────────────────────────────────────────────────────
    def list_projects(self):
        return list(self.projects)

    def get_project(self, project_id):
        return next((p for p in self.projects if p["id"] == project_id), None)

    def create_project(self, name, role):
        name = (name or "").strip()
        if not name or not self.policy.can_manage_projects(role):
            return None
        project = {
            "id": _new_id(),
            "name": name,
            "created_at": datetime.now().isoformat(timespec="seconds"),
        }
        self.projects.append(project)
        self._flush(PROJECTS)
        logger.info("Created project %s", name, extra={"project_id": project["id"]})
        return project

    def rename_project(self, project_id, name, role):
        name = (name or "").strip()
        project = self.get_project(project_id)
        if project is None or not name or not self.policy.can_manage_projects(role):
            return False
        if project["name"] == name:
            return False
        project["name"] = name
        self._flush(PROJECTS)
        return True

    def delete_project(self, project_id, role):
        """Delete a project together with all of its records."""
        if not self.policy.can_delete_project(role) or self.get_project(project_id) is None:
            return False
        self.projects = [p for p in self.projects if p["id"] != project_id]
        self._flush(PROJECTS)
        removed = self._drop_partition(project_id, KINDS)
        logger.info("Deleted project with %d records", removed, extra={"project_id": project_id})
        return True

    # ── records ──────────────────────────────────────────────────────────
    def list_by_project(self, kind, project_id):
        return [r for r in self.records[get_kind(kind).name] if r["project_id"] == project_id]

    def get(self, kind, record_id):
        return next((r for r in self.records[get_kind(kind).name] if r["id"] == record_id), None)

    def create(self, kind, project_id, role, **fields):
        spec = get_kind(kind)
        if not self.policy.can_add_record(role):
            logger.debug("%s may not add %s records", role, spec.name)
            return None
        record = blank_record(spec, _new_id(), project_id)
        for field, value in fields.items():
            if field in spec.fields:
                record[field] = _as_stored_value(value)
        self.records[spec.name].append(record)
        self._flush(spec.name)
        return record

    def update(self, kind, record_id, field, value, role):
        """
        Set one field on one record.

        Unknown ids, unknown fields and fields the role may not edit are
        ignored. The record dict is changed in place. Returns True when a
        value actually changed.
        """
        spec = get_kind(kind)
        record = self.get(spec, record_id)
        if record is None:
            return False
        if not self.policy.can_edit_field(role, field, spec):
            logger.debug("%s may not edit %s.%s", role, spec.name, field)
            return False
        value = _as_stored_value(value)
        if record.get(field) == value:
            return False
        record[field] = value
        self._flush(spec.name)
        return True

    def delete(self, kind, record_id, role):
        spec = get_kind(kind)
        if not self.policy.can_delete_record(role) or self.get(spec, record_id) is None:
            return False
        self.records[spec.name] = [r for r in self.records[spec.name] if r["id"] != record_id]
        self._flush(spec.name)
        return True

    def reset_project(self, project_id, role, kind=None):
        """
        Remove every record of one project, for one kind or all kinds.

        Other projects' records are left exactly as they were. Returns the
        number of records removed.
        """
        if not self.policy.can_reset_project(role):
            return 0
        kinds = [get_kind(kind).name] if kind else list(KINDS)
        removed = self._drop_partition(project_id, kinds)
        logger.warning("Reset %d records (%s)", removed, ", ".join(kinds), extra={"project_id": project_id})
        return removed

    def _drop_partition(self, project_id, kinds):
        removed = 0
        for kind in kinds:
            before = len(self.records[kind])
            self.records[kind] = [r for r in self.records[kind] if r["project_id"] != project_id]
            if len(self.records[kind]) != before:
                removed += before - len(self.records[kind])
                self._flush(kind)
        return removed

