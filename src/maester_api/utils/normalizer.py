# src/maester_api/utils/normalizer.py
"""
Flatten the engine's nested result document into TestResultRecord rows and
build the JobSummary counts from them.

The raw document is Pester-shaped: nodes may hold child ``Containers`` or
``Blocks`` and a list of ``Tests``. Block names make up the block path of the
tests beneath them.
"""
import re
from datetime import datetime, timezone
from typing import List, Optional

from maester_api.api.schemas import (
    SEVERITY_LEVELS,
    ConnectionDiagnostics,
    JobSummary,
    TestResultRecord,
)

BLOCK_SEPARATOR = " / "
ID_TAG_PATTERN = re.compile(r"^[A-Z][A-Z0-9]*(\.[A-Z0-9]+)+$")
SEVERITY_TAG_PATTERN = re.compile(r"^Severity:\s*(\w+)$", re.IGNORECASE)
TIMESPAN_PATTERN = re.compile(r"^(?:(\d+)\.)?(\d+):(\d+):(\d+)(?:\.(\d+))?$")

_OUTCOMES = {"passed": "Passed", "failed": "Failed", "skipped": "Skipped", "notrun": "NotRun"}
_SEVERITIES = {level.lower(): level for level in SEVERITY_LEVELS}


def _tags(test) -> List[str]:
    tags = test.get("Tag") or test.get("Tags") or []
    if isinstance(tags, str):
        tags = [tags]
    return [str(t) for t in tags]


def canonical_severity(value) -> Optional[str]:
    if value is None:
        return None
    return _SEVERITIES.get(str(value).strip().lower())


def resolve_severity(test) -> str:
    """Explicit Severity field, then a ``Severity:<Level>`` tag, then Info."""
    explicit = canonical_severity(test.get("Severity"))
    if explicit:
        return explicit
    for tag in _tags(test):
        match = SEVERITY_TAG_PATTERN.match(tag.strip())
        if match and canonical_severity(match.group(1)):
            return canonical_severity(match.group(1))
    return "Info"


def resolve_id(test, name) -> str:
    """Explicit Id, then the first ID-shaped tag (e.g. ``MT.1001``), then the hyphenated name."""
    explicit = test.get("Id") or test.get("TestId")
    if explicit:
        return str(explicit)
    for tag in _tags(test):
        if ID_TAG_PATTERN.match(tag.strip()):
            return tag.strip()
    return re.sub(r"\s+", "-", name.strip())


def resolve_category(block) -> str:
    if not block:
        return ""
    return re.split(r"[.\s]", block.strip(), maxsplit=1)[0]


def normalize_outcome(value) -> str:
    return _OUTCOMES.get(str(value or "").replace(" ", "").lower(), "NotRun")


def parse_duration_ms(test) -> int:
    if isinstance(test.get("DurationMs"), (int, float)):
        return int(test["DurationMs"])
    if isinstance(test.get("DurationSeconds"), (int, float)):
        return int(test["DurationSeconds"] * 1000)
    duration = test.get("Duration")
    if isinstance(duration, (int, float)):
        return int(duration)
    if isinstance(duration, str):
        match = TIMESPAN_PATTERN.match(duration.strip())
        if match:
            days, hours, minutes, seconds, fraction = match.groups()
            total = int(days or 0) * 86400 + int(hours) * 3600 + int(minutes) * 60 + int(seconds)
            frac = float("0." + fraction) if fraction else 0.0
            return int(round((total + frac) * 1000))
    return 0


def _error_text(error_record):
    if not error_record:
        return None
    if isinstance(error_record, list):
        parts = [_error_text(item) for item in error_record]
        return "; ".join(p for p in parts if p) or None
    if isinstance(error_record, dict):
        exception = error_record.get("Exception")
        if isinstance(exception, dict) and exception.get("Message"):
            return str(exception["Message"])
        return str(error_record.get("Message") or error_record.get("DisplayErrorMessage") or "") or None
    return str(error_record)


def to_record(test, block_path="") -> TestResultRecord:
    name = str(test.get("Name") or test.get("Title") or test.get("ExpandedName") or "")
    detail = test.get("ResultDetail") or {}
    block = test.get("Block")
    if isinstance(block, dict):
        block = block.get("Name")
    block = str(block) if block else block_path
    skipped_reason = detail.get("SkippedReason") or test.get("SkippedReason") or test.get("SkippedBecause")
    return TestResultRecord(
        id=resolve_id(test, name),
        name=name,
        result=normalize_outcome(test.get("Result")),
        duration_ms=parse_duration_ms(test),
        severity=resolve_severity(test),
        category=resolve_category(block),
        block=block,
        error_record=_error_text(test.get("ErrorRecord")),
        description=detail.get("TestDescription") or test.get("Description"),
        result_detail=detail.get("TestResult"),
        skipped_reason=str(skipped_reason) if skipped_reason else None,
        investigate=bool(detail.get("Investigate") or test.get("Investigate")),
        service=detail.get("Service") or test.get("Service"),
    )


def flatten_results(raw) -> List[TestResultRecord]:
    """Depth-first walk of the raw tree, keeping the engine's test order."""
    records = []

    def walk(node, path):
        if isinstance(node, list):
            for item in node:
                walk(item, path)
            return
        if not isinstance(node, dict):
            return
        for test in node.get("Tests") or []:
            if isinstance(test, dict):
                records.append(to_record(test, BLOCK_SEPARATOR.join(path)))
        for container in node.get("Containers") or []:
            walk(container, path)
        for block in node.get("Blocks") or []:
            name = block.get("Name") if isinstance(block, dict) else None
            walk(block, path + [str(name)] if name else path)

    walk(raw, [])
    return records


def effective_severity_filter(severity_filter) -> Optional[set]:
    """
    The set to filter on, or None when no filtering applies. An empty filter
    and the full severity set both mean "no filter".
    """
    wanted = {canonical_severity(s) for s in (severity_filter or [])} - {None}
    if not wanted or wanted >= set(SEVERITY_LEVELS):
        return None
    return wanted


def apply_severity_filter(records, severity_filter):
    wanted = effective_severity_filter(severity_filter)
    if wanted is None:
        return list(records)
    return [r for r in records if r.severity in wanted]


def build_summary(raw, suites, severity_filter, connections=None, duration_ms=0) -> JobSummary:
    """
    Build the job's result document. Counts always come from the returned
    ``tests`` list, never from the engine's own totals.
    """
    tests = apply_severity_filter(flatten_results(raw), severity_filter)
    passed = sum(1 for t in tests if t.result == "Passed")
    failed = sum(1 for t in tests if t.result == "Failed")
    return JobSummary(
        total_count=len(tests),
        passed_count=passed,
        failed_count=failed,
        skipped_count=len(tests) - passed - failed,
        duration_ms=int(duration_ms),
        timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        suites_run=list(suites or []),
        severity_filter=list(severity_filter or []),
        connections=connections or ConnectionDiagnostics(),
        tests=tests,
    )
