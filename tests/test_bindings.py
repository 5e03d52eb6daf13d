"""
Named column bindings resolved from header text.
"""

import pytest

from sheetops.core import bindings as bindings_module
from sheetops.core.bindings import (
    DOWNTIME_BINDINGS,
    ESCALATION_BINDINGS,
    NO_UPTIME_BINDINGS,
    PROJECT,
    header_words,
    resolve_bindings,
)
from sheetops.core.errors import Malformed
from sheetops.core.schema import Record, TabSchema


def schema_of(*headers, header_row_index=0):
    return TabSchema(tab_name="Log", header_row_index=header_row_index, headers=tuple(headers))


class TestHeaderWords:

    def test_words_are_upper_cased_tokens(self):
        assert header_words("Start of Downtime") == ("START", "OF", "DOWNTIME")
        assert header_words("cause/reason") == ("CAUSE", "REASON")


class TestResolveBindings:
    """Whole-word matching, alias priority and duplicates."""

    def test_downtime_columns(self):
        schema = schema_of("SITE", "PROJECT", "START OF DOWNTIME", "END OF DOWNTIME", "CAUSE OF DOWNTIME")
        resolved = resolve_bindings(schema, DOWNTIME_BINDINGS)

        assert resolved.header("site") == "SITE"
        assert resolved.index("start") == 2
        assert resolved.index("end") == 3
        assert resolved.header("cause") == "CAUSE OF DOWNTIME"

    def test_alias_matches_when_primary_absent(self):
        schema = schema_of("SITE", "DOWNTIME BEGIN", "UPTIME")
        resolved = resolve_bindings(schema, NO_UPTIME_BINDINGS)

        assert resolved.header("start") == "DOWNTIME BEGIN"
        assert resolved.header("end") == "UPTIME"

    def test_whole_words_only(self):
        """SITE must not bind to WEBSITES, nor END to PENDING."""
        schema = schema_of("WEBSITES", "PENDING", "SITE", "START", "END")
        resolved = resolve_bindings(schema, DOWNTIME_BINDINGS[:3])

        assert resolved.header("site") == "SITE"
        assert resolved.header("end") == "END"

    def test_one_header_per_binding(self):
        schema = schema_of("ACTION PLAN", "CAUSE")
        resolved = resolve_bindings(schema, ESCALATION_BINDINGS)

        assert resolved.header("cause") == "CAUSE"
        assert resolved.header("action_plan") == "ACTION PLAN"

    def test_duplicate_header_uses_last_index(self):
        schema = schema_of("SITE", "CAUSE", "ACTION PLAN", "CAUSE")
        resolved = resolve_bindings(schema, ESCALATION_BINDINGS)
        assert resolved.index("cause") == 3

    def test_missing_required_binding_is_malformed(self):
        schema = schema_of("SITE", "START")
        with pytest.raises(Malformed) as exc_info:
            resolve_bindings(schema, NO_UPTIME_BINDINGS)
        assert "end" in exc_info.value.message

    def test_optional_binding_may_be_absent(self):
        schema = schema_of("CAUSE", "ACTION PLAN")
        resolved = resolve_bindings(schema, ESCALATION_BINDINGS + (PROJECT,))

        assert not resolved.has("project")
        assert resolved.value(Record(row_number=2, fields={"CAUSE": "x"}), "project") == ""

    def test_cached_per_signature(self):
        schema = schema_of("SITE", "START", "END")
        first = resolve_bindings(schema, NO_UPTIME_BINDINGS)
        again = resolve_bindings(schema_of("SITE", "START", "END"), NO_UPTIME_BINDINGS)

        assert first is again
        assert len(bindings_module._cache) == 1

    def test_new_signature_resolves_again(self):
        first = resolve_bindings(schema_of("START", "END"), NO_UPTIME_BINDINGS)
        moved = resolve_bindings(schema_of("SITE", "START", "END"), NO_UPTIME_BINDINGS)

        assert first.index("start") == 0
        assert moved.index("start") == 1

    def test_value_reads_bound_header(self):
        schema = schema_of("Start", "End")
        resolved = resolve_bindings(schema, NO_UPTIME_BINDINGS)
        record = Record(row_number=2, fields={"Start": "01/01/2025 10:00:00", "End": ""})

        assert resolved.value(record, "start") == "01/01/2025 10:00:00"
        assert resolved.value(record, "end") == ""
