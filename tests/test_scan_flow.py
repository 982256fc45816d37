"""
Floortrack
Tests — QR scan flow.
"""

import pytest

from floortrack.core.exceptions import CapacityExceededError, NotFoundError, ValidationError
from floortrack.models.scan import ScanLog
from floortrack.services import location_service, scan_service


class TestParsePayload:
    @pytest.mark.parametrize("text, expected", [
        ("item:CAB-0001", ("item", "CAB-0001")),
        ("location:LOC-A1", ("location", "LOC-A1")),
        ("  location: LOC-A1 ", ("location", "LOC-A1")),
        ("LOC-A1", ("location", "LOC-A1")),
    ])
    def test_parse(self, text, expected):
        assert scan_service.parse_qr_payload(text) == expected

    @pytest.mark.parametrize("text", ["", "   ", "item:", None])
    def test_rejects_empty(self, text):
        with pytest.raises(ValidationError):
            scan_service.parse_qr_payload(text)


class TestResolve:
    def test_item(self, item):
        found = scan_service.resolve(item.qr_code, user_id="op-1")
        assert found["kind"] == "item"
        assert found["item"].id == item.id
        log = ScanLog.query.one()
        assert log.scan_type == "item_lookup"
        assert log.item_code == item.item_code

    def test_location(self, location):
        found = scan_service.resolve("location:LOC-A1", user_id="op-1")
        assert found["kind"] == "location"
        assert found["location"].id == location.id

    def test_unprefixed_location(self, location):
        assert scan_service.resolve("LOC-A1", user_id="op-1")["kind"] == "location"

    def test_unprefixed_falls_back_to_item(self, item):
        assert scan_service.resolve("CAB-0001", user_id="op-1")["kind"] == "item"

    def test_label_stored_with_prefix(self):
        loc = location_service.create("Legacy", "shelf", "location:OLD-7", created_by="admin")
        assert scan_service.resolve("location:OLD-7", user_id="op-1")["location"].id == loc.id

    def test_unknown_is_logged(self):
        with pytest.raises(NotFoundError):
            scan_service.resolve("item:GHOST", user_id="op-9")
        log = ScanLog.query.one()
        assert log.success is False
        assert log.scan_type == "error"
        assert log.user_id == "op-9"


class TestScanMove:
    def test_moves_and_logs(self, item, location):
        entry = scan_service.scan_move(item.qr_code, "location:LOC-A1", moved_by="op-1", notes="cart 3")
        assert entry.to_location_id == location.id
        assert entry.details["source"] == "qr_scan"
        assert entry.notes == "cart 3"

        log = ScanLog.query.one()
        assert log.scan_type == "move"
        assert log.location_id == location.id
        assert [s.id for s in scan_service.get_item_scans(item.item_code)] == [log.id]

    def test_scans_out_of_order(self, item, location):
        with pytest.raises(ValidationError):
            scan_service.scan_move("location:LOC-A1", item.qr_code, moved_by="op-1")
        assert ScanLog.query.one().success is False

    def test_full_location_is_logged(self, workflow, item):
        location_service.create("Tiny", "bin", "BIN-T", capacity=0, created_by="admin")
        with pytest.raises(CapacityExceededError):
            scan_service.scan_move(item.qr_code, "location:BIN-T", moved_by="op-1")
        log = ScanLog.query.one()
        assert log.success is False
        assert log.item_code == item.item_code
        assert "capacity" in log.error_message.lower()

    def test_recent_scans_per_user(self, item, location):
        scan_service.resolve(item.qr_code, user_id="op-1")
        scan_service.resolve("location:LOC-A1", user_id="op-2")
        assert [s.user_id for s in scan_service.get_recent_scans(user_id="op-2")] == ["op-2"]
        assert len(scan_service.get_recent_scans(limit=1)) == 1
