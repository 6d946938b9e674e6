"""
Shared fixtures: every test gets its own database, intake buffer and
snapshot paths under tmp_path.
"""

import pytest

from clubmap.core import config, dao, snapshot
from clubmap.core.db import init_db
from clubmap.core.schema import (
    ClubPayload,
    ContactInfo,
    ExternalLink,
    OriginMetadata,
    Submission,
    SubmissionKind,
    SubmissionStatus,
)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Point config at a temporary directory and create the schema."""
    monkeypatch.setattr(config, "DB_PATH", str(tmp_path / "clubmap.db"))
    monkeypatch.setattr(config, "INTAKE_DIR", str(tmp_path / "intake"))
    monkeypatch.setattr(config, "INTAKE_ARCHIVE", True)
    monkeypatch.setattr(config, "SNAPSHOT_PATH", str(tmp_path / "public" / "clubs.json"))
    monkeypatch.setattr(config, "SNAPSHOT_BACKUP_PATH", str(tmp_path / "public" / "clubs.json.backup"))
    monkeypatch.setattr(config, "RECONCILE_GRACE_SEC", 0)
    init_db()
    yield tmp_path
    # Background rebuilds must finish while config still points here
    snapshot.shutdown_executor(wait=True)


@pytest.fixture
def make_payload():
    def _make(name="游戏社", school="清华大学", **overrides):
        fields = dict(
            name=name,
            school=school,
            province="北京市",
            city="北京市",
            latitude=39.9995,
            longitude=116.3267,
            short_description="桌游与电子游戏爱好者",
            long_description="每周五晚活动，欢迎所有同学。",
            tags=["游戏", "桌游"],
            logo="logos/youxi.png",
            website="https://example.org/youxi",
            external_links=[ExternalLink(type="bilibili", url="https://space.bilibili.com/1")],
            contact=ContactInfo(email="club@example.org", qq="123456"),
        )
        fields.update(overrides)
        return ClubPayload(**fields)
    return _make


@pytest.fixture
def make_origin():
    def _make(email="student@example.org"):
        return OriginMetadata(submitter_email=email, client_ip="127.0.0.1", user_agent="pytest")
    return _make


@pytest.fixture
def make_submission(workspace, make_payload, make_origin):
    """Store a PENDING submission directly through the store adapter."""
    def _make(kind=SubmissionKind.NEW, target_record_id=None, **payload_overrides):
        submission = Submission(
            id=None,
            kind=kind,
            status=SubmissionStatus.PENDING,
            payload=make_payload(**payload_overrides),
            origin=make_origin(),
            target_record_id=target_record_id,
        )
        stored, _ = dao.create_submission(submission)
        return stored
    return _make


@pytest.fixture
def submission_body():
    """A valid POST /api/submissions body."""
    return {
        "submission_type": "new",
        "name": "游戏社",
        "school": "清华大学",
        "province": "北京市",
        "city": "北京市",
        "coordinates": {"latitude": 39.9995, "longitude": 116.3267},
        "short_description": "桌游与电子游戏爱好者",
        "long_description": "每周五晚活动，欢迎所有同学。",
        "tags": ["游戏", "桌游"],
        "external_links": [{"type": "bilibili", "url": "https://space.bilibili.com/1"}],
        "contact": {"email": "club@example.org"},
        "submitter_email": "student@example.org",
    }
