import pytest

from conftest import RAW_RESULTS
from maester_api.api.schemas import SEVERITY_LEVELS, ConnectionDiagnostics, JobSummary
from maester_api.utils.normalizer import (
    apply_severity_filter,
    build_summary,
    flatten_results,
    parse_duration_ms,
    resolve_category,
    resolve_id,
    resolve_severity,
)


def test_flatten_keeps_engine_order_and_block_paths():
    records = flatten_results(RAW_RESULTS)
    assert [r.name for r in records] == [
        "Default Authorization Settings",
        "Guest access",
        "MFA for admins",
        "Legacy auth  blocked",
    ]
    assert records[0].block == "EIDSCA.AF01 Authentication"
    assert records[2].block == "Maester Entra / Conditional Access"


def test_record_fields_are_resolved():
    passed, failed, skipped, unknown = flatten_results(RAW_RESULTS)

    assert (passed.id, passed.severity, passed.category, passed.duration_ms) == ("EIDSCA.AF01", "High", "EIDSCA", 1500)
    assert (failed.id, failed.severity, failed.result) == ("EIDSCA.AF02", "Critical", "Failed")
    assert failed.error_record == "Expected true"
    assert failed.description == "Guests are restricted"
    assert failed.result_detail == "Guests can invite"
    assert (skipped.id, skipped.severity, skipped.category) == ("MT.1001", "Info", "Maester")
    assert skipped.skipped_reason == "NotConnectedExchange"
    assert skipped.service == "Exchange"
    assert (unknown.id, unknown.result) == ("Legacy-auth-blocked", "NotRun")


@pytest.mark.parametrize("test,expected", [
    ({"Severity": "High", "Tag": ["Severity:Low"]}, "High"),
    ({"Tag": ["CIS", "severity:medium"]}, "Medium"),
    ({"Severity": "Bogus", "Tag": ["Severity:Critical"]}, "Critical"),
    ({"Tag": ["Severity:Bogus"]}, "Info"),
    ({}, "Info"),
])
def test_severity_precedence(test, expected):
    assert resolve_severity(test) == expected


@pytest.mark.parametrize("test,name,expected", [
    ({"Id": "CIS.M365.1.1.1", "Tag": ["MT.1001"]}, "x", "CIS.M365.1.1.1"),
    ({"Tag": ["Maester", "Entra.Id", "MT.1001", "MT.1002"]}, "x", "MT.1001"),
    ({"Tag": ["Severity:High"]}, "  Check  all\tthings ", "Check-all-things"),
])
def test_identifier_precedence(test, name, expected):
    assert resolve_id(test, name) == expected


@pytest.mark.parametrize("block,expected", [
    ("EIDSCA.AF01 Authentication", "EIDSCA"),
    ("Maester / Entra", "Maester"),
    ("CISA", "CISA"),
    ("", ""),
    (None, ""),
])
def test_category_from_block(block, expected):
    assert resolve_category(block) == expected


@pytest.mark.parametrize("test,expected", [
    ({"DurationMs": 12}, 12),
    ({"DurationSeconds": 1.25}, 1250),
    ({"Duration": 40}, 40),
    ({"Duration": "00:01:02.5"}, 62500),
    ({"Duration": "1.00:00:00"}, 86400000),
    ({"Duration": "later"}, 0),
    ({}, 0),
])
def test_duration_formats(test, expected):
    assert parse_duration_ms(test) == expected


def test_test_without_block_has_empty_category():
    (record,) = flatten_results({"Tests": [{"Name": "Loose", "Result": "Passed"}]})
    assert record.block == ""
    assert record.category == ""


def test_counts_come_from_returned_tests():
    summary = build_summary(RAW_RESULTS, [], [], ConnectionDiagnostics(graph=True), 10)
    assert summary.total_count == len(summary.tests) == 4
    assert summary.passed_count == 1
    assert summary.failed_count == 1
    assert summary.skipped_count == 2
    assert summary.passed_count + summary.failed_count + summary.skipped_count == summary.total_count


def test_strict_subset_filter_recomputes_counts():
    summary = build_summary(RAW_RESULTS, ["EIDSCA"], ["Critical"], None, 10)
    assert [t.id for t in summary.tests] == ["EIDSCA.AF02"]
    assert (summary.total_count, summary.passed_count, summary.failed_count, summary.skipped_count) == (1, 0, 1, 0)
    assert summary.severity_filter == ["Critical"]
    assert summary.suites_run == ["EIDSCA"]


def test_full_severity_set_equals_no_filter():
    unfiltered = build_summary(RAW_RESULTS, [], None, None, 0)
    full = build_summary(RAW_RESULTS, [], list(SEVERITY_LEVELS), None, 0)
    assert full.tests == unfiltered.tests
    assert full.total_count == unfiltered.total_count == 4


def test_empty_severity_filter_means_no_filter():
    summary = build_summary(RAW_RESULTS, [], [], None, 0)
    assert summary.total_count == 4
    assert summary.severity_filter == []


def test_filter_is_case_insensitive():
    records = flatten_results(RAW_RESULTS)
    assert [r.severity for r in apply_severity_filter(records, ["info"])] == ["Info", "Info"]


def test_summary_survives_json_round_trip():
    summary = build_summary(RAW_RESULTS, ["a"], ["High", "Critical"], ConnectionDiagnostics(graph=True), 77)
    restored = JobSummary.model_validate_json(summary.model_dump_json(by_alias=True))
    assert restored == summary
    assert [t.id for t in restored.tests] == [t.id for t in summary.tests]


def test_summary_serializes_camel_case():
    data = build_summary({"Tests": []}, [], [], None, 0).model_dump(by_alias=True)
    assert {"totalCount", "passedCount", "failedCount", "skippedCount", "durationMs",
            "suitesRun", "severityFilter", "connections", "tests", "timestamp"} == set(data)
    assert data["timestamp"].endswith("Z")
