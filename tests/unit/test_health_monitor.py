# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for probe evaluation and restart handling.
"""
import threading

from shopstack.MANAGERS.health_monitor import HealthMonitor, HealthStatus, ProbeTracker
from shopstack.MANAGERS.lifecycle import ServiceState
from shopstack.MODELS.service_definition import HealthCheck, RestartPolicy
from shopstack.RUNNERS.engine_client import MockEngineClient


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _monitor(topology, probe=None):
    clock = FakeClock()
    engine = MockEngineClient("yolo", probe=probe)
    failures = []
    monitor = HealthMonitor(engine, "yolo", topology.services, clock=clock, on_failure=failures.append)
    for name, svc in topology.services.items():
        engine.up("docker-compose.yml", svc)
        monitor.lifecycles[name].start()
        monitor.track(name)
    return monitor, engine, clock, failures


class TestProbeTracker:
    """Tests for ProbeTracker."""

    HC = HealthCheck(test=["CMD", "true"], interval=30, timeout=10, retries=3, start_period=40)

    def test_failures_in_grace_period_do_not_count(self):
        tracker = ProbeTracker(self.HC, started_at=0)
        assert tracker.record(False, 10) == HealthStatus.STARTING
        assert tracker.record(False, 39) == HealthStatus.STARTING
        assert tracker.failing_streak == 0

    def test_first_success_ends_grace_period(self):
        tracker = ProbeTracker(self.HC, started_at=0)
        assert tracker.record(True, 5) == HealthStatus.HEALTHY
        assert not tracker.in_grace_period(6)
        tracker.record(False, 6)
        assert tracker.failing_streak == 1

    def test_consecutive_failures_mark_unhealthy(self):
        tracker = ProbeTracker(self.HC, started_at=0)
        for t in (40, 70):
            assert tracker.record(False, t) == HealthStatus.STARTING
        assert tracker.record(False, 100) == HealthStatus.UNHEALTHY

    def test_success_resets_streak(self):
        tracker = ProbeTracker(self.HC, started_at=0)
        tracker.record(False, 40)
        tracker.record(False, 70)
        tracker.record(True, 100)
        tracker.record(False, 130)
        assert tracker.failing_streak == 1
        assert tracker.status == HealthStatus.HEALTHY

    def test_due(self):
        tracker = ProbeTracker(self.HC, started_at=0)
        assert tracker.due(0)
        tracker.record(True, 0)
        assert not tracker.due(29)
        assert tracker.due(30)


class TestHealthMonitor:
    """Tests for HealthMonitor."""

    def test_all_healthy(self, topology):
        monitor, _, _, failures = _monitor(topology)
        monitor.check_once()
        assert {n: lc.state for n, lc in monitor.lifecycles.items()} == {
            "redis": ServiceState.HEALTHY,
            "backend": ServiceState.HEALTHY,
            "frontend": ServiceState.HEALTHY,
        }
        assert monitor.get_health("backend").status == HealthStatus.HEALTHY
        assert failures == []

    def test_unhealthy_service_restarts_alone(self, topology):
        """A failing API is restarted by its own policy; its dependents are left running."""
        monitor, engine, clock, failures = _monitor(topology, probe=lambda name, env: name != "backend")

        monitor.check_once()
        assert monitor.get_health("backend").status == HealthStatus.STARTING
        for _ in range(4):
            clock.advance(30)
            monitor.check_once()

        health = monitor.get_health("backend")
        assert failures == ["backend"]
        assert health.restart_count == 1
        assert ("restart", "yolo-backend") in engine.calls
        assert monitor.lifecycles["backend"].state == ServiceState.STARTING
        assert ServiceState.UNHEALTHY in monitor.lifecycles["backend"].history
        assert monitor.lifecycles["frontend"].state == ServiceState.HEALTHY
        assert monitor.lifecycles["redis"].state == ServiceState.HEALTHY
        assert not any(c[0] == "restart" and c[1] != "yolo-backend" for c in engine.calls)

    def test_exited_container_restarts(self, topology):
        monitor, engine, clock, failures = _monitor(topology)
        monitor.check_once()
        engine.kill("yolo-redis", exit_code=137)

        clock.advance(1)
        monitor.check_once()
        assert failures == ["redis"]
        assert monitor.get_health("redis").restart_count == 1
        assert engine.containers["yolo-redis"].status == "running"
        assert ServiceState.STOPPED in monitor.lifecycles["redis"].history

        clock.advance(1)
        monitor.check_once()
        assert monitor.lifecycles["redis"].state == ServiceState.HEALTHY
        assert monitor.lifecycles["backend"].state == ServiceState.HEALTHY

    def test_explicit_stop_is_not_restarted(self, topology):
        monitor, engine, clock, _ = _monitor(topology)
        monitor.check_once()
        lifecycle = monitor.lifecycles["frontend"]
        lifecycle.request_stop()
        engine.stop("yolo-frontend")
        lifecycle.exited(0)

        clock.advance(60)
        monitor.check_once()
        assert ("restart", "yolo-frontend") not in engine.calls
        assert lifecycle.state == ServiceState.STOPPED

    def test_policy_no_leaves_service_down(self, topology):
        topology.services["redis"].restart_policy = RestartPolicy(condition="no")
        monitor, engine, clock, _ = _monitor(topology)
        engine.kill("yolo-redis", exit_code=1)
        monitor.check_once()
        assert monitor.lifecycles["redis"].state == ServiceState.STOPPED
        assert monitor.get_health("redis").status == HealthStatus.UNHEALTHY
        assert monitor.get_health("redis").restart_count == 0

    def test_restart_backoff_and_max_retries(self, topology):
        topology.services["redis"].restart_policy = RestartPolicy(condition="always", max_retries=2, delay=5)
        monitor, engine, clock, _ = _monitor(topology)

        engine.kill("yolo-redis")
        monitor.check_once()
        assert monitor.get_health("redis").restart_count == 1

        engine.kill("yolo-redis")
        clock.advance(1)
        monitor.check_once()
        # still inside the 5s backoff window
        assert monitor.get_health("redis").restart_count == 1

        clock.advance(5)
        monitor.check_once()
        assert monitor.get_health("redis").restart_count == 2

        engine.kill("yolo-redis")
        clock.advance(60)
        monitor.check_once()
        assert monitor.get_health("redis").restart_count == 2

    def test_service_without_probe_is_running(self, topology):
        topology.services["redis"].health_check = HealthCheck(test=["NONE"])
        monitor, _, _, _ = _monitor(topology)
        monitor.check_once()
        assert monitor.lifecycles["redis"].state == ServiceState.RUNNING
        assert monitor.get_health("redis").status == HealthStatus.NONE

    def test_reset_health(self, topology):
        monitor, _, _, _ = _monitor(topology)
        monitor.get_health("backend").restart_count = 4
        monitor.reset_health("backend")
        assert monitor.get_health("backend").restart_count == 0
        assert monitor.get_health("backend").status == HealthStatus.STARTING

    def test_thread_start_stop(self, topology):
        monitor, _, _, _ = _monitor(topology)
        monitor.interval = 0.01
        monitor.start()
        monitor.stop()
        assert not monitor.running
        assert monitor.get_all_health().keys() == topology.services.keys()

    def test_stop_waits_for_pass_in_progress(self, topology):
        """A probe still running when stop() is called finishes before stop() returns."""
        entered = threading.Event()
        release = threading.Event()
        finished = []

        def slow_probe(name, env):
            entered.set()
            release.wait(5)
            finished.append(name)
            return True

        monitor, _, _, _ = _monitor(topology, probe=slow_probe)
        monitor.start()
        assert entered.wait(5)

        stopper = threading.Thread(target=monitor.stop)
        stopper.start()
        stopper.join(0.2)
        assert stopper.is_alive()

        release.set()
        stopper.join(5)
        assert not stopper.is_alive()
        assert monitor.thread is None
        count = len(finished)
        assert count >= 1
        # nothing probes after stop() returned
        assert len(finished) == count

    def test_pass_holds_lock(self, topology):
        """Another thread cannot take the lock while a pass is probing."""
        acquired = []
        monitor, _, _, _ = _monitor(topology)

        def probe(name, env):
            t = threading.Thread(target=lambda: acquired.append(monitor.lock.acquire(blocking=False)))
            t.start()
            t.join()
            return True

        monitor.engine.probe = probe
        monitor.check_once()
        assert acquired and not any(acquired)
