"""Tests for SequenceService counters and daily document codes."""

from datetime import date

from stock_kernel.services.sequence_service import SequenceService, counter_name


class TestNextValue:

    def test_starts_at_one(self, sequence_service):
        assert sequence_service.next_value("widgets") == 1

    def test_strictly_increasing(self, sequence_service):
        values = [sequence_service.next_value("widgets") for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_sequences_are_independent(self, sequence_service):
        sequence_service.next_value("a")
        sequence_service.next_value("a")
        assert sequence_service.next_value("b") == 1

    def test_current_value(self, sequence_service):
        assert sequence_service.current_value("gadgets") is None
        sequence_service.next_value("gadgets")
        assert sequence_service.current_value("gadgets") == 1


class TestNextCode:

    def test_format(self, sequence_service):
        assert sequence_service.next_code("PNK", date(2024, 1, 15)) == "PNK-20240115-001"
        assert sequence_service.next_code("PNK", date(2024, 1, 15)) == "PNK-20240115-002"

    def test_restarts_each_day(self, sequence_service):
        sequence_service.next_code("DH", date(2024, 1, 15))
        assert sequence_service.next_code("DH", date(2024, 1, 16)) == "DH-20240116-001"

    def test_prefixes_do_not_share_counters(self, sequence_service):
        sequence_service.next_code("PNK", date(2024, 1, 15))
        assert sequence_service.next_code("PXK", date(2024, 1, 15)) == "PXK-20240115-001"

    def test_width(self, sequence_service):
        assert sequence_service.next_code("ST", date(2024, 1, 15), width=4) == "ST-20240115-0001"

    def test_counter_survives_new_service_instance(self, session, sequence_service):
        sequence_service.next_code("PT", date(2024, 1, 15))
        again = SequenceService(session)
        assert again.next_code("PT", date(2024, 1, 15)) == "PT-20240115-002"

    def test_rolled_back_allocation_is_reused(self, session, sequence_service):
        sequence_service.next_code("PXH", date(2024, 1, 15))
        savepoint = session.begin_nested()
        sequence_service.next_code("PXH", date(2024, 1, 15))
        savepoint.rollback()

        assert sequence_service.next_code("PXH", date(2024, 1, 15)) == "PXH-20240115-002"

    def test_counter_name(self):
        assert counter_name("GH", date(2024, 3, 9)) == "GH-20240309"
