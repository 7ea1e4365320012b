"""
Unit tests for the standings CSV and PDF export.
"""

import csv

from services.export import StandingsExporter


RESULTS = {
    "session_name": "Friday Quiz",
    "questions_asked": 6,
    "rankings": [
        {"rank": 1, "team_id": "A", "display_name": "Team A", "score": 30, "lives": 0, "eliminated": False},
        {"rank": 2, "team_id": "B", "display_name": "Team B", "score": 10, "lives": 0, "eliminated": True},
    ],
    "winner_ids": ["A"],
}


class TestStandingsExporter:
    """Tests for export_csv."""

    def setup_method(self):
        self.exporter = StandingsExporter()

    def test_writes_standings(self, tmp_path):
        """The CSV lists every ranked team under the column header."""
        path = tmp_path / "results.csv"

        assert self.exporter.export_csv(RESULTS, str(path))

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))

        header_index = rows.index(StandingsExporter.COLUMNS)
        assert rows[header_index + 1] == ["1", "A", "Team A", "30", "0", "no"]
        assert rows[header_index + 2] == ["2", "B", "Team B", "10", "0", "yes"]
        assert ["Winner", "A"] in rows
        assert ["Session", "Friday Quiz"] in rows

    def test_tied_winners_use_plural_label(self, tmp_path):
        """Several winners are listed on a "Winners" row."""
        path = tmp_path / "tie.csv"

        self.exporter.export_csv({**RESULTS, "winner_ids": ["A", "B"]}, str(path))

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        assert ["Winners", "A", "B"] in rows

    def test_unwritable_path_returns_false(self, tmp_path):
        """An OS error is logged and reported as False."""
        blocker = tmp_path / "file"
        blocker.write_text("x")

        assert not self.exporter.export_csv(RESULTS, str(blocker / "results.csv"))

    def test_default_path_is_sanitized(self):
        """Session names are made filesystem safe."""
        path = StandingsExporter.default_path("Friday Quiz #3")

        assert path.name.startswith("Friday_Quiz__3-")
        assert path.suffix == ".csv"

    def test_writes_pdf(self, tmp_path):
        """export_pdf writes a PDF document."""
        path = tmp_path / "results.pdf"

        assert self.exporter.export_pdf({**RESULTS, "session_name": "Quiz <&> Night"}, str(path))

        assert path.read_bytes().startswith(b"%PDF")

    def test_pdf_unwritable_path_returns_false(self, tmp_path):
        """PDF export reports OS errors as False."""
        blocker = tmp_path / "file"
        blocker.write_text("x")

        assert not self.exporter.export_pdf(RESULTS, str(blocker / "results.pdf"))
