from automation.models import CycleReport, ExecutionOutcome
from metrics import EngineMetrics, MetricsCollector, Timer


def test_counters_and_tags():
    collector = MetricsCollector()
    collector.increment("executions_total", tags={"outcome": "applied"})
    collector.increment("executions_total", value=2, tags={"outcome": "applied"})
    collector.gauge("tickets_deferred_last", 4)

    summary = collector.get_summary()

    assert summary["counters"] == {"executions_total[outcome=applied]": 3}
    assert summary["gauges"] == {"tickets_deferred_last": 4}


def test_timings_keep_recent_samples():
    collector = MetricsCollector(max_samples=3)
    for value in (100, 1, 2, 3):
        collector.timing("cycle_duration_ms", value)

    stats = collector.get_summary()["timers"]["cycle_duration_ms"]

    assert stats["count"] == 3
    assert stats["max"] == 3
    assert stats["mean"] == 2


def test_timer_records_elapsed_time():
    collector = MetricsCollector()
    with Timer(collector, "fetch_ms"):
        pass
    assert collector.get_summary()["timers"]["fetch_ms"]["count"] == 1


def test_record_cycle_counts_outcomes():
    metrics = EngineMetrics()
    report = CycleReport(trigger="manual", tickets_evaluated=5, tickets_deferred=2)
    report.outcomes[ExecutionOutcome.APPLIED.value] = 3
    report.outcomes[ExecutionOutcome.FAILED.value] = 1

    metrics.record_cycle(report)
    counters = metrics.get_summary()["counters"]

    assert counters["cycles_total[trigger=manual]"] == 1
    assert counters["executions_total[outcome=applied]"] == 3
    assert counters["executions_total[outcome=failed]"] == 1
    assert "executions_total[outcome=skipped_duplicate]" not in counters
    assert counters["tickets_evaluated"] == 5
    assert metrics.get_summary()["gauges"]["tickets_deferred_last"] == 2


def test_aborted_cycle_only_counts_abort():
    metrics = EngineMetrics()
    metrics.record_cycle(CycleReport(aborted=True))
    metrics.record_error("scheduler", "repository_unavailable")

    counters = metrics.get_summary()["counters"]

    assert counters["cycles_aborted"] == 1
    assert counters["errors_total"] == 1
    assert counters["error_scheduler_repository_unavailable"] == 1
    assert "tickets_evaluated" not in counters
