import pytest

from security import analyze, operator_activity, threat_level


def entry(ticket_id, status, operator="ana", device_id="dev-1", timestamp=1, sector="VIP"):
    return {
        "ticket_id": ticket_id,
        "status": status,
        "operator": operator,
        "device_id": device_id,
        "timestamp": timestamp,
        "sector": sector,
    }


class TestDuplicates:

    def test_used_repeats_are_counted(self):
        log = [
            entry("T1", "VALID", operator="ana", device_id="dev-1"),
            entry("T1", "USED", operator="bob", device_id="dev-2"),
            entry("T1", "USED", operator="ana", device_id="dev-3"),
        ]
        report = analyze(log)
        (dup,) = report.duplicate_tickets
        assert dup.ticket_id == "T1"
        assert dup.count == 2
        assert dup.operators == ["ana", "bob"]
        assert dup.devices == ["dev-2", "dev-3"]

    def test_single_used_attempt_is_not_a_duplicate(self):
        report = analyze([entry("T1", "VALID"), entry("T1", "USED")])
        assert report.duplicate_tickets == []

    def test_sorted_by_count(self):
        log = [entry("A", "USED")] * 2 + [entry("B", "USED")] * 3
        assert [d.ticket_id for d in analyze(log).duplicate_tickets] == ["B", "A"]


class TestOperators:

    def test_error_prone_operator_is_flagged(self):
        log = [entry(f"V{i}", "VALID", operator="eve") for i in range(4)]
        log += [entry("X", "INVALID", operator="eve"), entry("Y", "USED", operator="eve")]
        (risk,) = analyze(log).suspicious_operators
        assert risk.name == "eve"
        assert (risk.total, risk.invalid, risk.used) == (6, 1, 1)
        assert risk.error_rate == pytest.approx(33.33)

    def test_five_attempts_are_not_enough(self):
        log = [entry("X", "INVALID", operator="eve")] * 5
        assert analyze(log).suspicious_operators == []

    def test_wrong_sector_is_not_an_operator_error(self):
        log = [entry("V", "VALID", operator="eve")] * 5 + [entry("W", "WRONG_SECTOR", operator="eve")] * 5
        assert analyze(log).suspicious_operators == []

    def test_missing_operator_is_unknown(self):
        log = [entry("X", "INVALID", operator=None)] * 6
        assert analyze(log).suspicious_operators[0].name == "Unknown"


class TestDevices:

    def test_busy_device_reported(self):
        log = [entry(f"V{i}", "VALID") for i in range(9)] + [entry("W", "WRONG_SECTOR"), entry("X", "ALERT_REQUIRED")]
        (device,) = analyze(log).hot_devices
        assert device.device_id == "dev-1"
        assert (device.total, device.errors) == (11, 2)
        assert device.error_rate == pytest.approx(18.18)

    def test_ten_attempts_are_not_enough(self):
        assert analyze([entry("X", "INVALID")] * 10).hot_devices == []


class TestThreatLevel:

    def _report_with(self, duplicates, operators):
        log = []
        for i in range(duplicates):
            log += [entry(f"D{i}", "USED", operator=f"gate{i}", device_id=f"d{i}")] * 2
        for i in range(operators):
            log += [entry("X", "INVALID", operator=f"op{i}", device_id=f"o{i}")] * 6
        return analyze(log)

    def test_low(self):
        assert threat_level(self._report_with(0, 0)) == "LOW"
        assert threat_level(self._report_with(4, 0)) == "LOW"

    def test_medium(self):
        assert threat_level(self._report_with(1, 2)) == "MEDIUM"

    def test_high(self):
        report = self._report_with(1, 5)
        assert threat_level(report) == "HIGH"
        assert report.threat_level == "HIGH"


class TestOperatorActivity:

    def test_counts_per_outcome(self):
        log = [
            entry("A", "VALID", operator="ana", timestamp=10, sector="VIP"),
            entry("B", "VALID", operator="ana", timestamp=30, sector="Pista"),
            entry("C", "INVALID", operator="ana", timestamp=20, sector=None),
            entry("D", "VALID", operator="bob", timestamp=5),
            entry("E", "ALERT_REQUIRED", operator="bob", timestamp=6),
        ]
        ana, bob = operator_activity(log)
        assert (ana.name, ana.total, ana.valid, ana.invalid) == ("ana", 3, 2, 1)
        assert ana.last_seen == 30
        assert ana.sectors == {"VIP": 1, "Pista": 1, "Unknown": 1}
        assert (bob.valid, bob.alert) == (1, 1)

    def test_empty_log(self):
        assert operator_activity([]) == []
        report = analyze([])
        assert report.duplicate_tickets == report.suspicious_operators == report.hot_devices == []
