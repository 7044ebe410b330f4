"""
Tests for reconciler: vendor field resolution, classification of incoming
records, and the no-regression rule for USED tickets.
"""

from reconciler import (
    DEFAULT_OWNER,
    DEFAULT_SECTOR,
    merge_details,
    merge_sector_names,
    normalize_record,
    reconcile,
)

NOW = 1_700_000_000_000


class TestNormalizeRecord:

    def test_code_aliases_in_order(self):
        record = normalize_record({"id": "9", "codigo": "C-1", "access_code": ""})
        assert record["code"] == "C-1"

    def test_nested_sector_and_owner(self):
        record = normalize_record({"code": "A", "category": {"name": "VIP"}, "customer": {"name": "Ana", "email": "a@x.io"}})
        assert record["sector"] == "VIP"
        assert record["details"] == {"owner_name": "Ana", "email": "a@x.io"}

    def test_defaults(self):
        record = normalize_record({"code": "A"})
        assert record["sector"] == DEFAULT_SECTOR
        assert record["details"]["owner_name"] == DEFAULT_OWNER
        assert record["used"] is False

    def test_missing_code(self):
        assert normalize_record({"sector": "VIP", "name": "Ana"}) is None

    def test_used_signals(self):
        assert normalize_record({"code": "A", "status": "Validated"})["used"]
        assert normalize_record({"code": "A", "used": True})["used"]
        assert normalize_record({"code": "A"}, "checkins")["used"]
        assert not normalize_record({"code": "A", "used": "yes"})["used"]

    def test_validation_timestamp(self):
        record = normalize_record({"code": "A", "validated_at": "2024-01-01T14:00:00Z"})
        assert record["used"] is True
        assert record["used_at"] == 1_704_117_600_000


class TestReconcile:

    def test_duplicate_within_batch_inserts_once(self):
        rows = [{"code": "X1", "sector": "Geral"}, {"code": "X1", "sector": "Geral"}]
        result = reconcile([], rows, now_ms=NOW)
        assert len(result.to_insert) == 1
        assert result.stats.new == 1
        assert result.stats.total_found == 2

    def test_new_record_fields(self):
        result = reconcile([], [{"code": "A", "sector": "VIP", "name": "Ana"}], source_tag="cloud_sync", now_ms=NOW)
        inserted = result.to_insert[0]
        assert inserted["status"] == "AVAILABLE"
        assert inserted["used_at"] is None
        assert inserted["source"] == "cloud_sync"
        assert result.sectors_affected == {"VIP": 1}
        assert result.discovered_sectors == {"VIP"}

    def test_checkin_without_time_uses_now(self):
        result = reconcile([], [{"code": "A"}], source_type="checkins", now_ms=NOW)
        assert result.to_insert[0]["status"] == "USED"
        assert result.to_insert[0]["used_at"] == NOW

    def test_rerun_is_idempotent(self):
        rows = [
            {"code": "A", "sector": "VIP"},
            {"code": "B", "sector": "Pista", "status": "used", "used_at": 1_700_000_000},
        ]
        first = reconcile([], rows, now_ms=NOW)
        second = reconcile(first.to_insert, rows, now_ms=NOW + 1)
        assert not second.has_changes
        assert second.stats.new == 0
        assert second.stats.existing == 2

    def test_later_checkin_in_same_pass_marks_insert_used(self):
        rows = [{"code": "X", "sector": "VIP", "name": "Ana"}, {"code": "X", "status": "used", "used_at": 1_700_000_000, "email": "a@x.io"}]
        first = reconcile([], rows, now_ms=NOW)
        (insert,) = first.to_insert
        assert (insert["status"], insert["used_at"], insert["sector"]) == ("USED", 1_700_000_000_000, "VIP")
        assert insert["details"] == {"owner_name": "Ana", "email": "a@x.io"}
        assert first.stats.new == 1
        assert first.to_update == []

        second = reconcile(first.to_insert, rows, now_ms=NOW + 1)
        assert not second.has_changes

    def test_later_plain_duplicate_keeps_queued_checkin(self):
        rows = [{"code": "X", "status": "used", "used_at": 1_700_000_000}, {"code": "X", "status": "available"}]
        (insert,) = reconcile([], rows, now_ms=NOW).to_insert
        assert (insert["status"], insert["used_at"]) == ("USED", 1_700_000_000_000)

    def test_available_ticket_is_upgraded(self):
        existing = [{"id": "A", "sector": "VIP", "status": "AVAILABLE", "source": "manual_direct", "details": {"owner_name": "Ana"}}]
        rows = [{"code": "A", "status": "used", "name": "Someone", "email": "ana@x.io"}]
        result = reconcile(existing, rows, now_ms=NOW)
        assert result.to_insert == []
        update = result.to_update[0]
        assert update["status"] == "USED"
        assert update["used_at"] == NOW
        assert update["sector"] == "VIP"
        assert update["source"] == "manual_direct"
        assert update["details"] == {"owner_name": "Ana", "email": "ana@x.io"}
        assert (result.stats.existing, result.stats.updated) == (1, 1)

    def test_used_ticket_never_regresses(self):
        existing = [{"id": "A", "sector": "VIP", "status": "USED", "used_at": 1000}]
        result = reconcile(existing, [{"code": "A", "status": "available"}, {"code": "A", "status": "used"}], now_ms=NOW)
        assert not result.has_changes
        assert result.stats.existing == 2

    def test_shared_seen_across_sources(self):
        seen = set()
        first = reconcile([], [{"code": "A"}], seen=seen, now_ms=NOW)
        second = reconcile([], [{"code": "A"}, {"code": "B"}], seen=seen, now_ms=NOW)
        assert [r["id"] for r in first.to_insert] == ["A"]
        assert [r["id"] for r in second.to_insert] == ["B"]

    def test_records_without_code_are_ignored(self):
        result = reconcile([], [{"name": "nobody"}, "garbage", {"code": "  "}], now_ms=NOW)
        assert result.stats.total_found == 0
        assert not result.has_changes


class TestMerging:

    def test_merge_details_is_append_only(self):
        merged = merge_details({"owner_name": "Ana", "phone": ""}, {"owner_name": "Bob", "phone": "555"})
        assert merged == {"owner_name": "Ana", "phone": "555"}

    def test_merge_sector_names_sorted_union(self):
        assert merge_sector_names(["VIP", "Pista "], {"Camarote", "VIP"}) == ["Camarote", "Pista", "VIP"]
