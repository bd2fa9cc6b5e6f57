"""
Tests for the organized evidence zip and the Markdown case report.
"""

import io
import zipfile
from datetime import datetime
from unittest.mock import patch

import pytest

from app.db.models import CaseInsight, CaseTheory, InsightType
from app.services.archive_service import archive_filename, archive_service
from app.services.report_service import report_service
from app.utils.exceptions import CaseNotFoundError, NoFilesToArchiveError, StorageDownloadError


def _download(blobs):
    def _fake(key, bucket=None):
        if key not in blobs:
            raise StorageDownloadError(key, "NoSuchKey")
        return blobs[key]
    return _fake


class TestOrganizedZip:

    def test_no_files_in_category_names_the_category(self, db, make_case, add_file):
        case = make_case()
        add_file(case, "lease.pdf", suggested_name="Lease_2020.pdf", file_category="Housing")

        with pytest.raises(NoFilesToArchiveError) as exc_info:
            archive_service.build_organized_zip(db, case.id, "Financial")

        assert "Financial" in exc_info.value.message
        assert exc_info.value.status_code == 500

    def test_uncategorized_files_are_excluded(self, db, make_case, add_file):
        case = make_case()
        add_file(case, "raw.pdf")

        with pytest.raises(NoFilesToArchiveError):
            archive_service.build_organized_zip(db, case.id)

    def test_entries_grouped_by_category(self, db, make_case, add_file):
        case = make_case()
        a = add_file(case, "a.pdf", suggested_name="Bank_Statement_Jan.pdf", file_category="Financial")
        b = add_file(case, "b.jpg", suggested_name="Photo_Bruise.jpg", file_category=None)
        add_file(case, "c.txt", suggested_name="Missing.txt", file_category="Communications")
        blobs = {a.file_path: b"A", b.file_path: b"B"}

        with patch("app.services.archive_service.storage_service.download", side_effect=_download(blobs)):
            data, filename = archive_service.build_organized_zip(db, case.id)

        assert filename == f"organized_case_{case.id}.zip"
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert sorted(zf.namelist()) == ["Financial/Bank_Statement_Jan.pdf", "Uncategorized/Photo_Bruise.jpg"]
            assert zf.read("Financial/Bank_Statement_Jan.pdf") == b"A"

    def test_category_filter_puts_entries_at_root(self, db, make_case, add_file):
        case = make_case()
        a = add_file(case, "a.pdf", suggested_name="Bank_Statement_Jan.pdf", file_category="Financial Records")
        add_file(case, "b.pdf", suggested_name="Texts.pdf", file_category="Communications")

        with patch("app.services.archive_service.storage_service.download", side_effect=_download({a.file_path: b"A"})):
            data, filename = archive_service.build_organized_zip(db, case.id, "Financial Records")

        assert filename == f"case_{case.id}_Financial_Records.zip"
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["Bank_Statement_Jan.pdf"]

    def test_repeated_suggested_names_get_suffixes(self, db, make_case, add_file):
        case = make_case()
        a = add_file(case, "a.pdf", suggested_name="Statement.pdf", file_category="Financial")
        b = add_file(case, "b.pdf", suggested_name="Statement.pdf", file_category="Financial")
        blobs = {a.file_path: b"A", b.file_path: b"B"}

        with patch("app.services.archive_service.storage_service.download", side_effect=_download(blobs)):
            data, _ = archive_service.build_organized_zip(db, case.id, "Financial")

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            names = zf.namelist()
            assert sorted(names) == ["Statement (2).pdf", "Statement.pdf"]
            assert sorted(zf.read(n) for n in names) == [b"A", b"B"]

    def test_archive_filename(self):
        assert archive_filename("c1", None) == "organized_case_c1.zip"
        assert archive_filename("c1", "Police  Reports") == "case_c1_Police_Reports.zip"


class TestCaseReport:

    def test_report_sections_in_order(self, db, make_case, add_file):
        case = make_case(name="Doe Custody", user_specified_arguments="Best interests of the child")
        db.add(CaseTheory(case_id=case.id, fact_patterns=["Father relocated"], legal_arguments=[], status="developing"))
        db.add(CaseInsight(case_id=case.id, title="Missed visits", description="Six missed weekends.",
                           insight_type=InsightType.key_fact.value))
        db.add(CaseInsight(case_id=case.id, title="Move-out", description="Left the home.",
                           insight_type=InsightType.auto_generated_event.value,
                           timestamp=datetime(2022, 3, 1)))
        db.commit()
        add_file(case, "a.pdf", suggested_name="Texts | March.pdf", file_category="Communications",
                 file_hash="ab" * 32, description="Text messages")

        markdown, filename = report_service.generate(db, case.id)

        assert filename == f"Case_Report_Doe_Custody_{case.id}.md"
        headings = [line for line in markdown.splitlines() if line.startswith("## ")]
        assert headings == [
            "## Case Directives",
            "## AI-Generated Case Theory",
            "## AI-Generated Key Insights",
            "## Timeline of Key Events",
            "## Evidence Log",
        ]
        assert "# Case Report: Doe Custody" in markdown
        assert "- Father relocated" in markdown
        assert "No legal arguments identified yet." in markdown
        assert "### Missed visits (key_fact)" in markdown
        assert "**2022-03-01**: Move-out" in markdown
        assert "### Move-out" not in markdown
        assert "| Texts \\| March.pdf | Communications | " + "ab" * 32 + " | Text messages |" in markdown

    def test_empty_case(self, db, make_case):
        case = make_case()
        markdown, _ = report_service.generate(db, case.id)
        assert "No case theory has been generated yet." in markdown
        assert "No evidence files have been uploaded for this case." in markdown

    def test_missing_case(self, db):
        with pytest.raises(CaseNotFoundError):
            report_service.generate(db, "nope")
