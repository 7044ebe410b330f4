from types import SimpleNamespace

import pytest

from scan_validator import extract_code, validate
from schemas import ScanStatus


def ticket(sector="VIP", status="AVAILABLE", details=None):
    return SimpleNamespace(id="T1", sector=sector, status=status, used_at=None, details=details)


class TestValidate:

    def test_unknown_code_is_invalid(self):
        outcome = validate("NOPE", None, "VIP", now_ms=5)
        assert outcome.status == ScanStatus.INVALID
        assert outcome.log_entry.ticket_id == "NOPE"
        assert outcome.log_entry.sector is None

    def test_empty_code_is_invalid_and_logged(self):
        outcome = validate("", None, "VIP", operator="ana", now_ms=5)
        assert outcome.status == ScanStatus.INVALID
        assert outcome.message == "Empty code"
        assert (outcome.log_entry.ticket_id, outcome.log_entry.operator) == ("", "ana")

    def test_available_ticket_becomes_used(self):
        t = ticket()
        outcome = validate("T1", t, "VIP", device_id="dev-1", operator="ana", now_ms=1_700_000_000_000)
        assert outcome.status == ScanStatus.VALID
        assert t.status == "USED"
        assert t.used_at == 1_700_000_000_000
        assert outcome.log_entry.operator == "ana"
        assert outcome.log_entry.device_id == "dev-1"
        assert outcome.log_entry.timestamp == 1_700_000_000_000

    def test_used_ticket_keeps_first_entry_time(self):
        t = ticket(status="USED")
        t.used_at = 1000
        outcome = validate("T1", t, "VIP", now_ms=2000)
        assert outcome.status == ScanStatus.USED
        assert t.used_at == 1000
        assert outcome.log_entry.status == ScanStatus.USED

    def test_wrong_sector_leaves_ticket_alone(self):
        t = ticket(sector="Pista")
        outcome = validate("T1", t, "VIP", now_ms=1)
        assert outcome.status == ScanStatus.WRONG_SECTOR
        assert t.status == "AVAILABLE"
        assert t.used_at is None

    @pytest.mark.parametrize("target", [None, "", "All"])
    def test_no_sector_restriction(self, target):
        outcome = validate("T1", ticket(sector="Pista"), target, now_ms=1)
        assert outcome.status == ScanStatus.VALID

    def test_alert_requires_confirmation(self):
        t = ticket(details={"alert_message": "Check ID"})
        outcome = validate("T1", t, "VIP", now_ms=1)
        assert outcome.status == ScanStatus.ALERT_REQUIRED
        assert outcome.alert_message == "Check ID"
        assert t.status == "AVAILABLE"

    def test_confirmed_alert_is_valid(self):
        t = ticket(details={"alert_message": "Check ID"})
        outcome = validate("T1", t, "VIP", confirm_alert=True, now_ms=1)
        assert outcome.status == ScanStatus.VALID
        assert t.status == "USED"

    def test_blank_alert_is_ignored(self):
        outcome = validate("T1", ticket(details={"alert_message": "  "}), "VIP", now_ms=1)
        assert outcome.status == ScanStatus.VALID

    def test_second_scan_of_same_ticket_is_used(self):
        t = ticket()
        first = validate("T1", t, "VIP", now_ms=1)
        second = validate("T1", t, "VIP", now_ms=2)
        assert (first.status, second.status) == (ScanStatus.VALID, ScanStatus.USED)
        assert t.used_at == 1


class TestExtractCode:

    def test_plain_code_is_trimmed(self):
        assert extract_code("  ABC123 \n") == "ABC123"

    def test_url_last_segment(self):
        assert extract_code("https://tickets.example.com/t/ABCDEF123") == "ABCDEF123"

    def test_url_query_param_when_segment_short(self):
        assert extract_code("https://example.com/t/?code=XYZ9") == "XYZ9"

    def test_url_without_code_is_returned_whole(self):
        assert extract_code("https://example.com/a") == "https://example.com/a"

    def test_empty(self):
        assert extract_code("") == ""
