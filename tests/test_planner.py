"""
Tests for transfer planning (shared by dry run and execution).
"""

from datetime import UTC, datetime, timedelta

import pytest

from filebridge.models import PostTransferAction
from filebridge.storage.base import FileInfo
from filebridge.transfer.planner import SKIP_EXISTS, SKIP_FILTER, build_plan, move_folder_segment

from conftest import make_job

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=UTC)


def _file(name: str, size: int = 10, modified_at: datetime | None = T0) -> FileInfo:
    return FileInfo(name=name, size=size, modified_at=modified_at)


class TestFilterAndHidden:
    def test_csv_filter_with_hidden_file(self):
        job = make_job(file_filter="*.csv")
        plan = build_plan(job, [_file("a.csv"), _file("b.txt"), _file(".hidden.csv")], [])

        assert plan.total_in_source == 3
        assert plan.would_transfer == 1
        assert [f.name for f in plan.transferable] == ["a.csv"]
        assert plan.skipped_by_filter == 2

    def test_hidden_files_not_listed(self):
        plan = build_plan(make_job(), [_file(".env"), _file("data.bin")], [])

        assert [f.name for f in plan.files] == ["data.bin"]
        assert plan.skipped_by_filter == 1

    def test_hidden_files_allowed_when_flag_off(self):
        plan = build_plan(make_job(skip_hidden_files=False), [_file(".env")], [])

        assert plan.would_transfer == 1

    def test_filter_is_case_insensitive(self):
        plan = build_plan(make_job(file_filter="*.CSV"), [_file("report.csv"), _file("REPORT.Csv")], [])

        assert plan.would_transfer == 2

    def test_empty_filter_matches_everything(self):
        job = make_job()
        job.file_filter = ""
        plan = build_plan(job, [_file("a"), _file("b.dat")], [])

        assert plan.would_transfer == 2

    def test_directories_are_ignored(self):
        entries = [_file("a.csv"), FileInfo("nested", 0, None, is_directory=True)]
        plan = build_plan(make_job(), entries, [])

        assert plan.total_in_source == 1
        assert [f.name for f in plan.files] == ["a.csv"]

    def test_filtered_file_has_reason(self):
        plan = build_plan(make_job(file_filter="*.csv"), [_file("b.txt")], [])

        assert plan.files[0].skip_reason == SKIP_FILTER
        assert plan.files[0].would_skip


class TestDestinationConflicts:
    def test_existing_file_skipped_without_overwrite(self):
        plan = build_plan(make_job(), [_file("a.csv")], [_file("a.csv")])

        assert plan.files[0].skip_reason == SKIP_EXISTS
        assert plan.files[0].unchanged is False
        assert plan.skipped_by_exists == 1
        assert plan.would_transfer == 0

    def test_existing_file_transferred_with_overwrite(self):
        plan = build_plan(make_job(overwrite_existing=True), [_file("a.csv")], [_file("a.csv")])

        assert plan.would_transfer == 1

    def test_destination_directory_with_same_name_is_not_a_conflict(self):
        destination = [FileInfo("a.csv", 0, None, is_directory=True)]
        plan = build_plan(make_job(), [_file("a.csv")], destination)

        assert plan.would_transfer == 1


class TestDeltaSync:
    def test_same_size_newer_destination_is_unchanged(self):
        job = make_job(delta_sync=True, overwrite_existing=True)
        plan = build_plan(job, [_file("a.csv", 10, T0)], [_file("a.csv", 10, T0 + timedelta(minutes=5))])

        assert plan.files[0].skip_reason == SKIP_EXISTS
        assert plan.files[0].unchanged is True
        assert plan.skipped_unchanged == 1

    def test_size_change_is_transferred(self):
        job = make_job(delta_sync=True, overwrite_existing=True)
        plan = build_plan(job, [_file("a.csv", 12, T0)], [_file("a.csv", 10, T0)])

        assert plan.would_transfer == 1

    def test_older_destination_is_transferred(self):
        job = make_job(delta_sync=True, overwrite_existing=True)
        plan = build_plan(job, [_file("a.csv", 10, T0)], [_file("a.csv", 10, T0 - timedelta(hours=1))])

        assert plan.would_transfer == 1

    def test_missing_mtime_compares_size_only(self):
        job = make_job(delta_sync=True, overwrite_existing=True)
        plan = build_plan(job, [_file("a.csv", 10, T0)], [_file("a.csv", 10, None)])

        assert plan.files[0].unchanged is True

    def test_changed_file_without_overwrite_still_skipped(self):
        job = make_job(delta_sync=True, overwrite_existing=False)
        plan = build_plan(job, [_file("a.csv", 12, T0)], [_file("a.csv", 10, T0)])

        assert plan.files[0].skip_reason == SKIP_EXISTS
        assert plan.files[0].unchanged is False


class TestPostActionAndArchives:
    def test_move_destination_is_computed(self):
        job = make_job(post_transfer_action=PostTransferAction.MOVE, move_path="/archive")
        plan = build_plan(job, [_file("a.csv")], [])

        assert plan.files[0].post_action == PostTransferAction.MOVE
        assert plan.files[0].move_destination == "/archive/a.csv"

    def test_move_folder_inside_source_is_excluded(self):
        job = make_job(post_transfer_action=PostTransferAction.MOVE, move_path="/in/done")
        entries = [_file("a.csv"), _file("done")]
        plan = build_plan(job, entries, [])

        assert plan.total_in_source == 1
        assert [f.name for f in plan.files] == ["a.csv"]

    @pytest.mark.parametrize(
        "source, move, expected",
        [
            ("/in", "/in/done", "done"),
            ("/in/", "/in/done/2024/", "done"),
            ("/in", "/inbox/done", None),
            ("/in", "/archive", None),
            ("/in", None, None),
        ],
    )
    def test_move_folder_segment(self, source, move, expected):
        assert move_folder_segment(source, move) == expected

    def test_archive_flagged_for_extraction(self):
        plan = build_plan(make_job(extract_archives=True), [_file("bundle.zip"), _file("plain.csv")], [])

        bundle, plain = plan.files
        assert bundle.is_archive and bundle.would_extract
        assert not plain.is_archive and not plain.would_extract

    def test_archive_not_extracted_when_flag_off(self):
        plan = build_plan(make_job(), [_file("bundle.tar.gz")], [])

        assert plan.files[0].is_archive
        assert not plan.files[0].would_extract


class TestAggregates:
    def test_total_bytes_counts_only_transferable(self):
        plan = build_plan(make_job(file_filter="*.csv"), [_file("a.csv", 100), _file("b.txt", 50)], [])

        assert plan.total_bytes == 100

    def test_plan_is_deterministic(self):
        job = make_job(file_filter="*.csv")
        source = [_file("a.csv"), _file("b.txt"), _file(".h")]
        destination = [_file("a.csv")]

        assert build_plan(job, source, destination).to_dict() == build_plan(job, source, destination).to_dict()

    def test_to_dict_includes_aggregates(self):
        data = build_plan(make_job(), [_file("a.csv", 7)], []).to_dict()

        assert data["would_transfer"] == 1
        assert data["total_bytes"] == 7
        assert data["files"][0]["name"] == "a.csv"
        assert data["files"][0]["modified_at"] == T0.isoformat()
