"""Tests for duration parsing, amount computation and the work record lifecycle."""
from decimal import Decimal

import pytest

import ledger
from errors import ErrorKind, ServiceError


class TestParseDuration:

    @pytest.mark.parametrize("raw, minutes", [
        ("45", 45),
        ("2.30", 150),
        ("2.5", 150),
        ("2.3", 150),
        ("2.05", 125),
        ("2.", 120),
        ("0.45", 45),
        (" 1.15 ", 75),
    ])
    def test_valid(self, raw, minutes):
        assert ledger.parse_duration(raw) == minutes

    def test_fraction_is_padded_not_read_as_single_minutes(self):
        assert ledger.parse_duration("2.3") != 123

    @pytest.mark.parametrize("raw", ["", None, "abc", "1.2.3", "-5", "1.x", "2.305", "0", "0.0"])
    def test_invalid(self, raw):
        with pytest.raises(ServiceError) as exc:
            ledger.parse_duration(raw)
        assert exc.value.kind is ErrorKind.INVALID_INPUT


class TestComputeTotal:

    def test_round_numbers_are_exact(self):
        assert ledger.compute_total(90, 100) == Decimal("150.00")
        assert ledger.compute_total(60, 250) == Decimal("250.00")

    def test_rounds_half_up_to_cents(self):
        # 10 / 60 * 100 = 16.666...
        assert ledger.compute_total(10, 100) == Decimal("16.67")
        # 1 / 60 * 0.3 = 0.005
        assert ledger.compute_total(1, "0.3") == Decimal("0.01")

    def test_decimal_rate(self):
        assert ledger.compute_total(30, 99.5) == Decimal("49.75")


class TestCreateWork:

    def test_creates_with_derived_total(self, farmer):
        work = ledger.create_work(farmer["_id"], "Ploughing", 90, 100, "north field")
        assert work["total_amount"] == 150.0
        assert work["amount_paid"] == 0.0
        assert work["farmer_id"] == farmer["_id"]
        assert work["notes"] == "north field"

    def test_time_str_used_when_minutes_missing(self, farmer):
        work = ledger.create_work(farmer["_id"], "Sowing", None, 60, time_str="2.30")
        assert work["minutes"] == 150
        assert work["total_amount"] == 150.0

    @pytest.mark.parametrize("minutes, rate", [(0, 100), (-5, 100), (60, 0), (60, -1), (1.5, 100), ("x", 100), (60, "abc")])
    def test_rejects_non_positive_or_malformed(self, farmer, minutes, rate):
        with pytest.raises(ServiceError) as exc:
            ledger.create_work(farmer["_id"], "Ploughing", minutes, rate)
        assert exc.value.kind is ErrorKind.INVALID_INPUT

    def test_rejects_missing_work_type(self, farmer):
        with pytest.raises(ServiceError) as exc:
            ledger.create_work(farmer["_id"], "  ", 60, 100)
        assert exc.value.kind is ErrorKind.INVALID_INPUT

    def test_unknown_farmer(self):
        with pytest.raises(ServiceError) as exc:
            ledger.create_work("64b000000000000000000000", "Ploughing", 60, 100)
        assert exc.value.kind is ErrorKind.NOT_FOUND

    def test_validation_happens_before_farmer_lookup(self):
        with pytest.raises(ServiceError) as exc:
            ledger.create_work("not-an-id", "Ploughing", 0, 100)
        assert exc.value.kind is ErrorKind.INVALID_INPUT


class TestUpdateWork:

    def test_recomputes_total_and_keeps_amount_paid(self, farmer, make_work):
        work = make_work(minutes=60, rate=100)
        ledger.add_payment(farmer["_id"], 40, work["_id"])

        updated = ledger.update_work(work["_id"], {"minutes": 120})
        assert updated["minutes"] == 120
        assert updated["rate_per_60"] == 100.0
        assert updated["total_amount"] == 200.0
        assert updated["amount_paid"] == 40.0

    def test_rate_and_type_change(self, make_work):
        work = make_work(minutes=30, rate=100)
        updated = ledger.update_work(work["_id"], {"rate_per_60": 80, "work_type": "Harvest", "notes": "late"})
        assert updated["total_amount"] == 40.0
        assert updated["work_type"] == "Harvest"
        assert updated["notes"] == "late"

    def test_time_str_update(self, make_work):
        work = make_work(minutes=30, rate=60)
        assert ledger.update_work(work["_id"], {"time_str": "1.5"})["minutes"] == 110

    def test_invalid_values_rejected(self, make_work):
        work = make_work()
        with pytest.raises(ServiceError) as exc:
            ledger.update_work(work["_id"], {"rate_per_60": 0})
        assert exc.value.kind is ErrorKind.INVALID_INPUT

    def test_unknown_work(self):
        with pytest.raises(ServiceError) as exc:
            ledger.update_work("64b000000000000000000000", {"minutes": 10})
        assert exc.value.kind is ErrorKind.NOT_FOUND


class TestDeleteAndListWork:

    def test_delete(self, make_work, farmer):
        work = make_work()
        ledger.delete_work(work["_id"])
        assert ledger.list_work(farmer["_id"]) == []
        with pytest.raises(ServiceError) as exc:
            ledger.delete_work(work["_id"])
        assert exc.value.kind is ErrorKind.NOT_FOUND

    def test_delete_leaves_referencing_payments(self, make_work, farmer):
        work = make_work()
        ledger.add_payment(farmer["_id"], 25, work["_id"])
        ledger.delete_work(work["_id"])
        assert ledger.total_paid(farmer["_id"]) == Decimal("25.00")

    def test_list_newest_first_with_farmer_join(self, make_farmer, make_work, farmer):
        other = make_farmer(name="Meena")
        first = make_work(work_type="Ploughing")
        second = make_work(work_type="Sowing", farmer_id=other["_id"])
        third = make_work(work_type="Harvest")

        works = ledger.list_work()
        assert [w["_id"] for w in works] == [third["_id"], second["_id"], first["_id"]]
        assert works[1]["farmer"]["name"] == "Meena"
        assert works[0]["farmer"] == {"_id": farmer["_id"], "name": farmer["name"], "phone": farmer["phone"]}
        assert "password_hash" not in works[0]["farmer"]

    def test_list_filtered_by_farmer(self, make_farmer, make_work, farmer):
        other = make_farmer(name="Meena")
        make_work()
        make_work(farmer_id=other["_id"])
        works = ledger.list_work(str(other["_id"]))
        assert len(works) == 1
        assert works[0]["farmer_id"] == other["_id"]

    def test_list_carries_work_balance(self, make_work, farmer):
        work = make_work(minutes=60, rate=100)
        ledger.add_payment(farmer["_id"], 30, work["_id"])
        assert ledger.list_work(farmer["_id"])[0]["balance"] == 70.0

    def test_list_with_malformed_farmer_id_is_empty(self, make_work):
        make_work()
        assert ledger.list_work("nope") == []
