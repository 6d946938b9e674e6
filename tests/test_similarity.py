"""
Advisory duplicate check: scoring, thresholds and degraded mode.
"""

from unittest.mock import patch

import pytest

from clubmap.core import config
from clubmap.core.errors import StoreUnavailableError
from clubmap.core.schema import PublishedRecord
from clubmap.core.similarity import DuplicateChecker, bigrams, jaccard, normalize, score


def record(record_id, payload):
    return PublishedRecord(id=record_id, payload=payload, created_at="2024-01-01T00:00:00+00:00",
                           updated_at="2024-01-01T00:00:00+00:00")


class TestScoring:

    def test_normalize_strips_punctuation_and_case(self):
        assert normalize(" Go Club！ ") == "goclub"
        assert normalize("ＡＢＣ") == "abc"  # full-width folded by NFKC

    def test_bigrams_of_short_strings(self):
        assert bigrams("") == set()
        assert bigrams("社") == {"社"}
        assert bigrams("游戏社") == {"游戏", "戏社"}

    def test_jaccard_bounds(self):
        assert jaccard(set(), set()) == 0.0
        assert jaccard({"ab"}, {"ab"}) == 1.0
        assert jaccard({"ab"}, {"cd"}) == 0.0

    def test_identical_club_scores_one(self, make_payload):
        assert score(make_payload(), record("r1", make_payload())) == 1.0

    def test_same_name_other_school(self, make_payload):
        s = score(make_payload(), record("r1", make_payload(school="北京大学")))
        # Name identical; school shares only the "大学" bigram out of five
        assert s == pytest.approx(0.7 + 0.3 * (1 / 5), abs=1e-4)


class TestDuplicateChecker:

    def test_flags_near_duplicate(self, make_payload):
        checker = DuplicateChecker(load_records=lambda limit: [
            record("r1", make_payload(name="游戏社 ")),
            record("r2", make_payload(name="摄影协会", school="复旦大学")),
        ])
        result = checker.check(make_payload())

        assert result.passed is False
        assert [m.record_id for m in result.matches] == ["r1"]
        assert result.matches[0].score == 1.0
        assert result.degraded is False

    def test_passes_when_nothing_similar(self, make_payload):
        checker = DuplicateChecker(load_records=lambda limit: [
            record("r2", make_payload(name="摄影协会", school="复旦大学")),
        ])
        result = checker.check(make_payload())

        assert result.passed is True
        assert result.matches == []

    def test_matches_below_threshold_are_reported_but_pass(self, make_payload, monkeypatch):
        monkeypatch.setattr(config, "DUPLICATE_THRESHOLD", 0.95)
        checker = DuplicateChecker(load_records=lambda limit: [
            record("r1", make_payload(school="北京大学")),
        ])
        result = checker.check(make_payload())

        assert result.passed is True
        assert len(result.matches) == 1

    def test_edit_excludes_its_target(self, make_payload):
        checker = DuplicateChecker(load_records=lambda limit: [record("r1", make_payload())])
        result = checker.check(make_payload(), exclude_record_id="r1")

        assert result.passed is True
        assert result.matches == []

    def test_match_count_is_capped(self, make_payload, monkeypatch):
        monkeypatch.setattr(config, "DUPLICATE_MAX_MATCHES", 2)
        checker = DuplicateChecker(load_records=lambda limit: [
            record(f"r{i}", make_payload(name=f"游戏社{i}")) for i in range(5)
        ])
        result = checker.check(make_payload())

        assert len(result.matches) == 2
        assert result.matches[0].score >= result.matches[1].score

    def test_scan_limit_passed_to_loader(self, make_payload, monkeypatch):
        monkeypatch.setattr(config, "DUPLICATE_SCAN_LIMIT", 7)
        seen = []
        checker = DuplicateChecker(load_records=lambda limit: seen.append(limit) or [])
        checker.check(make_payload())
        assert seen == [7]

    def test_failure_degrades_to_permissive(self, make_payload):
        def broken(limit):
            raise StoreUnavailableError("store down")

        with patch("clubmap.core.similarity.logger") as mock_logger:
            result = DuplicateChecker(load_records=broken).check(make_payload())

        assert result.passed is True
        assert result.matches == []
        assert result.degraded is True
        mock_logger.log_duplicate_check.assert_called_once()
        assert mock_logger.log_duplicate_check.call_args.kwargs["degraded"] is True

    def test_default_loader_reads_store(self, workspace, make_submission):
        from clubmap.core import dao
        dao.create_published_record(make_submission(), "admin")

        result = DuplicateChecker().check(make_submission().payload)
        assert result.passed is False
