"""
Tests for backend/activity/fields.py and the presentation helpers in
backend/activity/definitions.py.
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from activity.definitions import (
    MetricDefinition,
    MetricDefinitionError,
    format_value,
    metric_title,
    validate_definition,
)
from activity.fields import (
    ActivityField,
    DailyLogError,
    DailyLogRecord,
    enforce_deal_invariant,
    field_value,
    merge_log,
    validate_counters,
)


class TestDealInvariant:

    def test_zero_deals_clears_value(self):
        out = enforce_deal_invariant({"deals_won": 0, "deal_value": 50000})
        assert out["deals_won"] == 0 and out["deal_value"] == 0

    def test_zero_value_clears_deals(self):
        out = enforce_deal_invariant({"deals_won": 2, "deal_value": 0})
        assert out["deals_won"] == 0 and out["deal_value"] == 0

    def test_both_positive_untouched(self):
        values = {"deals_won": 2, "deal_value": 125000, "quotes": 3}
        assert enforce_deal_invariant(values) == values

    def test_only_written_fields_trigger(self):
        out = enforce_deal_invariant({"deals_won": 3, "deal_value": 0}, changed=["deals_won"])
        assert out["deals_won"] == 3

    def test_input_not_mutated(self):
        values = {"deals_won": 0, "deal_value": 100}
        enforce_deal_invariant(values)
        assert values["deal_value"] == 100


class TestMerge:

    def test_updates_win_and_others_kept(self):
        existing = {"cold_calls": 10, "quotes": 2, "deals_won": 1, "deal_value": 5000}
        merged = merge_log(existing, {"quotes": 5})
        assert merged["cold_calls"] == 10
        assert merged["quotes"] == 5
        assert merged["deals_won"] == 1
        assert merged["text_messages"] == 0

    def test_new_row_fills_zeros(self):
        merged = merge_log(None, {"cold_calls": 3})
        assert set(merged) == set(ActivityField.ALL)
        assert merged["cold_calls"] == 3

    def test_clearing_deals_zeroes_stored_value(self):
        existing = {"deals_won": 3, "deal_value": 90000}
        merged = merge_log(existing, {"deals_won": 0})
        assert merged["deal_value"] == 0

    def test_raising_deals_from_zero_is_kept(self):
        merged = merge_log({"deals_won": 0, "deal_value": 0}, {"deals_won": 3})
        assert merged["deals_won"] == 3
        assert merged["deal_value"] == 0

    def test_first_write_of_deal_count_is_kept(self):
        assert merge_log(None, {"deals_won": 2})["deals_won"] == 2

    def test_unrelated_write_leaves_stored_deals(self):
        merged = merge_log({"deals_won": 4, "deal_value": 0}, {"quotes": 1})
        assert merged["deals_won"] == 4

    def test_zero_value_write_clears_stored_count(self):
        merged = merge_log({"deals_won": 2, "deal_value": 8000}, {"deal_value": 0})
        assert merged["deals_won"] == 0


class TestValidateCounters:

    def test_accepts_known_non_negative_ints(self):
        assert validate_counters({"cold_calls": 0, "quotes": 4}) == {"cold_calls": 0, "quotes": 4}

    @pytest.mark.parametrize("values", [
        {"cold_calls": -1},
        {"cold_calls": 1.5},
        {"cold_calls": "3"},
        {"cold_calls": True},
        {"pushups": 3},
    ])
    def test_rejects_bad_input(self, values):
        with pytest.raises(DailyLogError):
            validate_counters(values)


class TestRecord:

    def test_absent_fields_read_zero(self):
        record = DailyLogRecord(user_id="u1", team_id="t1", date="2026-03-01", values={"quotes": 2})
        assert record.get("quotes") == 2
        assert record.get("cold_calls") == 0
        assert field_value({"quotes": None}, "quotes") == 0

    def test_from_row_coerces_aggregates(self):
        record = DailyLogRecord.from_row({
            "id": "log-1", "user_id": "u1", "team_id": "t1",
            "date": "2026-03-01T00:00:00", "cold_calls": "12", "quotes": 3.0,
        })
        assert record.date == "2026-03-01"
        assert record.get("cold_calls") == 12
        assert record.get("quotes") == 3
        assert record.to_row()["text_messages"] == 0


class TestDefinitionHelpers:

    def test_total_needs_a_field(self):
        with pytest.raises(MetricDefinitionError):
            validate_definition(MetricDefinition(id="m", type="total", metrics=[]))

    def test_unknown_field_rejected(self):
        with pytest.raises(MetricDefinitionError, match="pushups"):
            validate_definition(MetricDefinition(id="m", type="total", metrics=["pushups"]))

    @pytest.mark.parametrize("overrides", [
        {"type": ["total"]},
        {"display_type": {"kind": "number"}},
        {"aggregation": ["sum"]},
        {"display_mode": ["chart_total"]},
        {"metrics": "cold_calls"},
        {"metrics": [["cold_calls"]]},
    ])
    def test_malformed_values_rejected_cleanly(self, overrides):
        fields = dict(id="m", type="total", metrics=["cold_calls"])
        fields.update(overrides)
        with pytest.raises(MetricDefinitionError):
            validate_definition(MetricDefinition(**fields))

    def test_title_lists_repeated_field_once(self):
        assert metric_title(MetricDefinition(id="m", type="total", metrics=["quotes", "quotes"])) \
            == "Total Quotes"

    def test_titles(self):
        assert metric_title(MetricDefinition(id="m", type="total", metrics=["cold_calls", "quotes"])) \
            == "Total Cold Calls + Quotes"
        assert metric_title(MetricDefinition(id="m", type="conversion", metrics=["deals_won", "quotes"])) \
            == "Deals Won / Quotes Rate"
        assert metric_title(MetricDefinition(id="m", type="total", metrics=["quotes"], name="Q")) == "Q"

    @pytest.mark.parametrize("value,display_type,cents,expected", [
        (1234, "number", False, "1,234"),
        (2.5, "number", False, "2.5"),
        (123456, "dollar", True, "$1,234.56"),
        (1234, "dollar", False, "$1,234.00"),
        (5 / 30, "percent", False, "16.7%"),
        (0, "percent", False, "0.0%"),
    ])
    def test_format_value(self, value, display_type, cents, expected):
        assert format_value(value, display_type, cents=cents) == expected
