"""
Tests: CSV export bytes, column order and file naming.
"""

import csv
import io
from datetime import date

from sitecontrol import config
from sitecontrol.access import ADMIN
from sitecontrol.export import (
    EXPORT_COLUMNS,
    export_csv,
    export_filename,
    export_frame,
    format_variance,
)
from sitecontrol.models import OPERATIONS, PROCUREMENT
from sitecontrol.tables import column_labels


def _rows(data):
    text = data.decode("utf-8-sig")
    return list(csv.reader(io.StringIO(text)))


class TestProcurementCsv:
    def test_bom_and_localized_header_order(self, store, today):
        records = store.list_by_project(PROCUREMENT, config.DEFAULT_PROJECT_ID)
        _, data = export_csv(PROCUREMENT, records, "Default Project", today=today, locale="zh-TW")
        assert data.startswith(b"\xef\xbb\xbf")
        labels = column_labels(PROCUREMENT, "zh-TW")
        header = _rows(data)[0]
        assert header == [labels[c] for c in EXPORT_COLUMNS[PROCUREMENT]]
        assert header[0] == "工程項目"

    def test_every_cell_is_quoted(self, store, today):
        records = store.list_by_project(PROCUREMENT, config.DEFAULT_PROJECT_ID)
        _, data = export_csv(PROCUREMENT, records, "Default Project", today=today, locale="en")
        lines = data.decode("utf-8-sig").splitlines()
        assert lines[0].startswith('"Engineering item","Scheduled request"')
        assert lines[2].startswith('"混凝土澆置","2023-10-15","2023-10-10","+5","On schedule"')
        assert len(lines) == 3

    def test_variance_and_status_cells(self, store, today):
        records = store.list_by_project(PROCUREMENT, config.DEFAULT_PROJECT_ID)
        _, data = export_csv(PROCUREMENT, records, "Default Project", today=today, locale="en")
        first, second = _rows(data)[1:]
        # 2023-10-01 planned, raised 2023-10-05
        assert first[3] == "-4"
        assert first[4] == "Warning (yellow)"
        assert second[3] == "+5"
        assert second[-1] == "需優先處理"

    def test_embedded_quotes_and_commas(self, store, today):
        store.update(PROCUREMENT, "1", "remarks", 'crane "B", north gate', ADMIN)
        records = store.list_by_project(PROCUREMENT, config.DEFAULT_PROJECT_ID)
        _, data = export_csv(PROCUREMENT, records, "Default Project", today=today, locale="en")
        assert '"crane ""B"", north gate"' in data.decode("utf-8-sig")
        assert _rows(data)[1][-1] == 'crane "B", north gate'


class TestOperationsCsv:
    def test_rendered_cells(self, two_projects, today):
        store, a, _ = two_projects
        store.create(OPERATIONS, a["id"], ADMIN, item="Snag list")
        records = store.list_by_project(OPERATIONS, a["id"])
        _, data = export_csv(OPERATIONS, records, a["name"], today=today, locale="zh-TW")
        rows = _rows(data)
        labels = column_labels(OPERATIONS, "zh-TW")
        assert rows[0] == [labels[c] for c in EXPORT_COLUMNS[OPERATIONS]]
        frame, blank = rows[1], rows[2]
        assert frame[0] == "結構工程"
        assert frame[4] == "31"
        assert frame[7] == ""
        assert frame[8] == ""
        assert frame[10] == "67%"
        assert blank[0] == ""
        assert blank[10] == "0%"

    def test_frame_matches_csv_columns(self, two_projects, today):
        store, a, _ = two_projects
        df = export_frame(OPERATIONS, store.list_by_project(OPERATIONS, a["id"]), today=today, locale="en")
        assert list(df.columns)[:3] == ["Stage", "Item", "Scheduled start"]
        assert df.iloc[0]["Stage"] == "Structural"


def test_empty_export_has_header_only(today):
    _, data = export_csv(OPERATIONS, [], "Empty", today=today, locale="en")
    assert len(_rows(data)) == 1


class TestFilename:
    def test_zh_names(self):
        day = date(2024, 1, 21)
        assert export_filename(PROCUREMENT, "Tower A", day, "zh-TW") == "Tower A_2024-01-21.csv"
        assert export_filename(OPERATIONS, "Tower A", day, "zh-TW") == "Tower A_營運管理控制表_2024-01-21.csv"

    def test_en_names(self):
        day = date(2024, 1, 21)
        assert export_filename(PROCUREMENT, "Tower A", day, "en") == "Tower A_procurement_2024-01-21.csv"

    def test_unsafe_characters_replaced(self):
        day = date(2024, 1, 21)
        assert export_filename(PROCUREMENT, 'A/B: "east"', day, "en") == "A_B_ _east__procurement_2024-01-21.csv"
        assert export_filename(PROCUREMENT, "   ", day, "en") == "project_procurement_2024-01-21.csv"


def test_format_variance():
    assert format_variance(5) == "+5"
    assert format_variance(0) == "0"
    assert format_variance(-3) == "-3"
    assert format_variance(None) == ""
