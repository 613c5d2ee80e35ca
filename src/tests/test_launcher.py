import sys
import time

from maester_api.api.schemas import JobSummary
from maester_api.engine.config import engine_settings
from maester_api.engine.launcher import WorkerLauncher

FAKE_ENGINE = (
    "import json, os\n"
    "doc = {'Blocks': [{'Name': 'MT Smoke', 'Tests': ["
    "{'Name': 'Engine smoke', 'Id': 'MT.0001', 'Result': 'Passed', 'Severity': 'High'},"
    "{'Name': 'Engine skip', 'Id': 'MT.0002', 'Result': 'Skipped'}]}]}\n"
    "with open(os.environ['MAESTER_OUTPUT'], 'w') as f:\n"
    "    json.dump(doc, f)\n"
    "assert os.environ['MAESTER_GRAPH_TOKEN'] == 'caller-token'\n"
)


def exit_quickly(bundle):
    pass


def sleep_for(bundle):
    time.sleep(bundle["seconds"])


def wait_until(predicate, timeout=60.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.1)
    return False


def test_finished_worker_is_reaped_once():
    launcher = WorkerLauncher(target=exit_quickly)
    process = launcher.launch({"job_id": "job-1"})
    process.join(30)

    assert launcher.reap("job-1") is True
    assert launcher.reap("job-1") is False
    assert launcher.handles == {}


def test_live_worker_is_never_waited_on():
    launcher = WorkerLauncher(target=sleep_for)
    process = launcher.launch({"job_id": "job-2", "seconds": 5})
    try:
        started = time.monotonic()
        assert launcher.reap("job-2") is False
        assert launcher.reap_finished() == 0
        assert time.monotonic() - started < 1
        assert launcher.active_count() == 1
    finally:
        process.terminate()
        process.join(10)
    assert launcher.reap_finished() == 1


def test_reap_unknown_job():
    assert WorkerLauncher().reap("missing") is False


def test_worker_process_runs_a_scan_end_to_end(store, tmp_path):
    settings = engine_settings()
    settings.update(
        database_url=store.database_url,
        engine_argv=[sys.executable, "-c", FAKE_ENGINE],
        tests_path=str(tmp_path),
        login_authority="http://127.0.0.1:9",
        graph_url="http://127.0.0.1:9",
        token_timeout_seconds=2,
        engine_timeout_seconds=60,
    )
    job_id = store.create_job("contoso", ["smoke"], [])
    launcher = WorkerLauncher()
    launcher.launch({
        "job_id": job_id,
        "tenant_id": "contoso",
        "suites": ["smoke"],
        "severity": [],
        "tags": [],
        "bearer_token": "caller-token",
        "settings": settings,
    })

    assert wait_until(lambda: store.read_job(job_id).status != "running")
    job = store.read_job(job_id)
    assert job.status == "completed", job.error
    summary = JobSummary.model_validate_json(job.result)
    assert [t.id for t in summary.tests] == ["MT.0001", "MT.0002"]
    assert (summary.passed_count, summary.skipped_count) == (1, 1)
    assert summary.connections.graph is True
    assert summary.connections.exchange is False
    assert wait_until(lambda: launcher.reap(job_id))
