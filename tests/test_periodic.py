import threading

from storyprint.exceptions import ProviderUnavailableError
from storyprint.jobs.periodic import PeriodicTask
from storyprint.jobs.webhook_monitor import WebhookMonitor


def test_run_once_records_result():
    task = PeriodicTask("Counter", lambda: {"ok": True}, interval_seconds=60)

    assert task.run_once() == {"ok": True}
    assert task.runs == 1
    assert task.last_result == {"ok": True}


def test_exceptions_do_not_escape_run_once():
    def boom():
        raise RuntimeError("provider exploded")

    task = PeriodicTask("Boom", boom, interval_seconds=60)

    assert task.run_once() is None
    assert task.runs == 1


def test_thread_runs_until_stopped():
    ran = threading.Event()
    task = PeriodicTask("Fast", ran.set, interval_seconds=0.01, run_immediately=True)

    task.start()
    assert ran.wait(timeout=2)
    assert task.is_running

    task.stop(timeout=2)
    assert not task.is_running


def test_start_twice_keeps_one_thread():
    task = PeriodicTask("Once", lambda: None, interval_seconds=60)
    task.start()
    first = task._thread

    task.start()

    assert task._thread is first
    task.stop(timeout=2)


class StubSubscriptions:
    def __init__(self, fail_initialize=False):
        self.fail_initialize = fail_initialize
        self.initialized = 0

    def initialize(self):
        self.initialized += 1
        if self.fail_initialize:
            raise ProviderUnavailableError("GET", "webhooks/", 3, "HTTP 503")
        return {"success": True}

    def perform_health_check(self):
        return {"healthy": True}

    def monitor_delivery_bursts(self):
        return {"checked": True}


def test_monitor_starts_even_when_initialize_fails():
    subscriptions = StubSubscriptions(fail_initialize=True)
    monitor = WebhookMonitor(subscriptions, health_interval_seconds=60, burst_interval_seconds=60)

    monitor.start()
    try:
        assert subscriptions.initialized == 1
        assert monitor.is_running
        status = monitor.status()
        assert status["health_check"]["interval_seconds"] == 60
        assert status["burst_check"]["running"] is True
    finally:
        monitor.stop()

    assert not monitor.is_running


def test_monitor_timers_call_the_subscription_service():
    monitor = WebhookMonitor(StubSubscriptions(), health_interval_seconds=60, burst_interval_seconds=60)

    assert monitor.health_check.run_once() == {"healthy": True}
    assert monitor.burst_check.run_once() == {"checked": True}
