"""
Snapshot synchronizer: deterministic rebuilds, backup, migration, and the
end-to-end path from intake to clubs.json.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from clubmap.core import dao
from clubmap.core.approval import ApprovalWorkflow
from clubmap.core.errors import InvalidStatusError
from clubmap.core.intake import IntakeService
from clubmap.core.schema import PublishedRecord
from clubmap.core.snapshot import SnapshotSynchronizer, entry_to_payload, migrate, project


@pytest.fixture
def synchronizer(workspace):
    return SnapshotSynchronizer()


def read_snapshot(sync):
    return json.loads(sync.snapshot_path.read_text(encoding="utf-8"))


class TestProjection:

    def test_projection_fields(self, make_payload):
        record = PublishedRecord(id="club_1", payload=make_payload(), created_at="t", updated_at="t")
        entry = project(record)

        assert entry["id"] == "club_1"
        assert entry["coordinates"] == [116.3267, 39.9995]
        assert entry["latitude"] == 39.9995
        assert entry["longitude"] == 116.3267
        assert entry["img_name"] == "logos/youxi.png"
        assert entry["contact"] == {"email": "club@example.org", "qq": "123456"}

    def test_both_descriptions_always_present(self, make_payload):
        record = PublishedRecord(id="club_1", payload=make_payload(short_description="", long_description=""),
                                 created_at="t", updated_at="t")
        entry = project(record)

        assert entry["short_description"] == ""
        assert entry["long_description"] == ""


class TestRebuild:

    def test_rebuild_writes_all_records(self, synchronizer, make_submission):
        for name in ["游戏社", "摄影社"]:
            dao.create_published_record(make_submission(name=name), "admin")

        result = synchronizer.rebuild()

        data = read_snapshot(synchronizer)
        assert [e["name"] for e in data] == ["游戏社", "摄影社"]
        assert result.record_count == 2
        assert result.backup_path is None

    def test_rebuild_twice_is_byte_identical(self, synchronizer, make_submission):
        dao.create_published_record(make_submission(), "admin")

        first = synchronizer.rebuild()
        first_bytes = synchronizer.snapshot_path.read_bytes()
        second = synchronizer.rebuild()

        assert synchronizer.snapshot_path.read_bytes() == first_bytes
        assert first.checksum == second.checksum

    def test_previous_version_is_backed_up(self, synchronizer, make_submission):
        dao.create_published_record(make_submission(name="游戏社"), "admin")
        synchronizer.rebuild()
        before = synchronizer.snapshot_path.read_bytes()

        dao.create_published_record(make_submission(name="摄影社"), "admin")
        result = synchronizer.rebuild()

        assert result.backup_path == str(synchronizer.backup_path)
        assert synchronizer.backup_path.read_bytes() == before
        assert len(read_snapshot(synchronizer)) == 2

    def test_non_ascii_written_verbatim(self, synchronizer, make_submission):
        dao.create_published_record(make_submission(), "admin")
        synchronizer.rebuild()
        assert "游戏社" in synchronizer.snapshot_path.read_text(encoding="utf-8")

    def test_failed_write_keeps_previous_snapshot(self, synchronizer, make_submission):
        dao.create_published_record(make_submission(), "admin")
        synchronizer.rebuild()
        before = synchronizer.snapshot_path.read_bytes()
        dao.create_published_record(make_submission(name="摄影社"), "admin")

        with patch("clubmap.core.snapshot.os.fsync", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                synchronizer.rebuild()

        assert synchronizer.snapshot_path.read_bytes() == before
        assert not [p for p in synchronizer.snapshot_path.parent.iterdir() if p.name.endswith(".tmp")]

    def test_subscribers_notified(self, synchronizer, make_submission):
        listener = MagicMock()
        synchronizer.subscribe(listener)

        result = synchronizer.rebuild()

        listener.assert_called_once_with(result)

    def test_failing_subscriber_does_not_fail_rebuild(self, synchronizer):
        synchronizer.subscribe(MagicMock(side_effect=RuntimeError("listener bug")))
        result = synchronizer.rebuild()
        assert result.record_count == 0


class TestTrigger:

    def test_trigger_runs_in_background(self, workspace, make_submission):
        dao.create_published_record(make_submission(), "admin")
        with ThreadPoolExecutor(max_workers=1) as executor:
            sync = SnapshotSynchronizer(executor=executor)
            result = sync.trigger().result(timeout=10)

        assert result.record_count == 1
        assert len(read_snapshot(sync)) == 1

    def test_trigger_failure_is_logged_not_raised(self, workspace):
        with ThreadPoolExecutor(max_workers=1) as executor:
            sync = SnapshotSynchronizer(executor=executor)
            with patch.object(sync, "rebuild", side_effect=OSError("disk full")), \
                    patch("clubmap.core.snapshot.logger") as mock_logger:
                assert sync.trigger().result(timeout=10) is None

        mock_logger.log_sync.assert_called_with("rebuild", "failed", {"error": "disk full"})


class TestMigrate:

    def write_source(self, path, entries):
        path.write_text(json.dumps(entries, ensure_ascii=False), encoding="utf-8")
        return str(path)

    def test_migrate_twice_is_noop(self, workspace):
        source = self.write_source(workspace / "legacy.json", [
            {"id": 1, "name": "游戏社", "school": "清华大学", "province": "北京市", "city": "北京市",
             "coordinates": [116.3267, 39.9995], "shortDescription": "短", "description": "长",
             "tags": ["游戏"], "img_name": "a.png"},
            {"id": 2, "name": "摄影社", "school": "复旦大学", "province": "上海市",
             "latitude": 31.3, "longitude": 121.5, "short_description": "拍照"},
        ])

        first = migrate(source)
        second = migrate(source)

        assert (first.created, first.updated, first.unchanged) == (2, 0, 0)
        assert (second.created, second.updated, second.unchanged) == (0, 0, 2)
        assert dao.count_published_records() == 2

    def test_legacy_ids_and_field_spellings(self, workspace):
        source = self.write_source(workspace / "legacy.json", [
            {"id": 7, "name": "游戏社", "school": "清华大学", "province": "北京市",
             "coordinates": [116.3267, 39.9995], "shortDescription": "短", "description": "长"},
        ])
        migrate(source)

        record = dao.get_published_record("7")
        assert record.payload.latitude == 39.9995
        assert record.payload.longitude == 116.3267
        assert record.payload.short_description == "短"
        assert record.payload.long_description == "长"
        assert record.source_submission is None

    def test_changed_entry_updates_in_place(self, workspace):
        entry = {"id": "a1", "name": "游戏社", "school": "清华大学", "province": "北京市",
                 "latitude": 39.9995, "longitude": 116.3267, "city": "北京市"}
        migrate(self.write_source(workspace / "v1.json", [entry]))

        summary = migrate(self.write_source(workspace / "v2.json", [dict(entry, city="海淀区")]))

        assert summary.updated == 1
        assert dao.get_published_record("a1").payload.city == "海淀区"

    def test_repeated_club_in_source_last_entry_wins(self, workspace):
        entry = {"name": "游戏社", "school": "清华大学", "province": "北京市",
                 "latitude": 39.9995, "longitude": 116.3267}
        source = self.write_source(workspace / "legacy.json", [dict(entry, city="A"), dict(entry, city="B")])

        first = migrate(source)
        second = migrate(source)

        assert (first.created, first.updated, first.skipped) == (1, 0, 1)
        assert "entry 0" in first.errors[0]
        assert (second.created, second.updated, second.unchanged) == (0, 0, 1)
        assert dao.count_published_records() == 1
        assert dao.find_published_record("游戏社", "清华大学").payload.city == "B"

    def test_invalid_entries_skipped(self, workspace):
        source = self.write_source(workspace / "legacy.json", [
            {"name": "", "school": "清华大学", "latitude": 1, "longitude": 1},
            {"name": "无坐标社", "school": "清华大学"},
            {"name": "游戏社", "school": "清华大学", "latitude": 39.9, "longitude": 116.3},
        ])

        summary = migrate(source)

        assert summary.skipped == 2
        assert summary.created == 1
        assert len(summary.errors) == 2

    def test_taken_id_gets_fresh_one(self, workspace):
        migrate(self.write_source(workspace / "a.json", [
            {"id": 1, "name": "游戏社", "school": "清华大学", "latitude": 1, "longitude": 1},
        ]))
        migrate(self.write_source(workspace / "b.json", [
            {"id": 1, "name": "摄影社", "school": "清华大学", "latitude": 1, "longitude": 1},
        ]))

        assert dao.get_published_record("1").payload.name == "游戏社"
        assert dao.find_published_record("摄影社", "清华大学").id.startswith("club_")

    def test_migrate_then_rebuild_round_trips(self, synchronizer, workspace):
        source = self.write_source(workspace / "legacy.json", [
            {"id": 1, "name": "游戏社", "school": "清华大学", "province": "北京市",
             "coordinates": [116.3267, 39.9995]},
        ])
        migrate(source)
        synchronizer.rebuild()

        assert entry_to_payload(read_snapshot(synchronizer)[0]) == dao.get_published_record("1").payload

    def test_non_array_source(self, workspace):
        path = workspace / "bad.json"
        path.write_text('{"clubs": []}', encoding="utf-8")
        with pytest.raises(ValueError):
            migrate(str(path))


class TestEndToEnd:

    def test_submit_approve_publish(self, workspace, make_payload, make_origin):
        sync = SnapshotSynchronizer()
        workflow = ApprovalWorkflow(synchronizer=sync)
        result = IntakeService().submit(
            make_payload(name="游戏社", school="清华大学", latitude=39.9995, longitude=116.3267),
            make_origin(),
        )

        workflow.approve(result.submission_id, "admin")
        sync.trigger().result(timeout=10)

        entries = [e for e in read_snapshot(sync) if e["name"] == "游戏社"]
        assert len(entries) == 1
        assert entries[0]["school"] == "清华大学"
        assert entries[0]["coordinates"] == [116.3267, 39.9995]

    def test_descriptions_survive_every_stage(self, workspace, make_payload, make_origin):
        sync = SnapshotSynchronizer()
        workflow = ApprovalWorkflow(synchronizer=sync)
        service = IntakeService()
        real_create = dao.create_submission
        pending_at_store_write = []

        def create_after_buffering(submission, *args, **kwargs):
            pending_at_store_write.extend(service.buffer.list_pending())
            return real_create(submission, *args, **kwargs)

        with patch.object(dao, "create_submission", side_effect=create_after_buffering):
            result = service.submit(
                make_payload(name="游戏社", school="清华大学", latitude=39.9995, longitude=116.3267,
                             short_description="A", long_description="B B B"),
                make_origin(),
            )

        assert pending_at_store_write == [result.receipt]
        assert service.buffer.list_pending() == []

        submission = dao.get_submission(result.submission_id)
        assert submission.payload.short_description == "A"
        assert submission.payload.long_description == "B B B"

        record = workflow.approve(result.submission_id, "admin").record
        assert record.payload.short_description == "A"
        assert record.payload.long_description == "B B B"

        sync.trigger().result(timeout=10)
        entries = [e for e in read_snapshot(sync) if e["name"] == "游戏社"]
        assert len(entries) == 1
        assert entries[0]["school"] == "清华大学"
        assert entries[0]["coordinates"] == [116.3267, 39.9995]
        assert entries[0]["short_description"] == "A"
        assert entries[0]["long_description"] == "B B B"

    def test_approving_approved_submission_leaves_snapshot_unchanged(self, workspace, make_submission):
        sync = SnapshotSynchronizer()
        workflow = ApprovalWorkflow(synchronizer=sync)
        submission = make_submission()
        workflow.approve(submission.id, "admin")
        sync.rebuild()
        before = sync.snapshot_path.read_bytes()

        with pytest.raises(InvalidStatusError) as exc_info:
            workflow.approve(submission.id, "admin")

        assert exc_info.value.current_status == "APPROVED"
        assert dao.count_published_records() == 1
        assert sync.snapshot_path.read_bytes() == before
