import pytest

from tryon_tracker.tracking.performance import PoseDetectionPerformanceMonitor


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_empty_monitor_reports_zeros() -> None:
    metrics = PoseDetectionPerformanceMonitor(clock=FakeClock()).get_metrics()
    assert metrics.to_dict() == {
        "average_processing_time": 0.0,
        "average_fps": 0.0,
        "current_fps": 0.0,
        "total_frames": 0,
    }


def test_fps_sample_taken_once_per_second() -> None:
    clock = FakeClock()
    monitor = PoseDetectionPerformanceMonitor(clock=clock)
    for now, ms in ((100.0, 4.0), (500.0, 6.0), (1000.0, 8.0)):
        clock.now = now
        monitor.record_frame(ms)
    metrics = monitor.get_metrics()
    assert metrics.average_processing_time == pytest.approx(6.0)
    assert metrics.current_fps == pytest.approx(3.0)
    assert metrics.total_frames == 0

    clock.now = 1200.0
    monitor.record_frame(2.0)
    assert monitor.get_metrics().total_frames == 1

    for _ in range(4):
        clock.now += 500.0
        monitor.record_frame(2.0)
    metrics = monitor.get_metrics()
    assert metrics.current_fps == pytest.approx(2.0)
    assert metrics.average_fps == pytest.approx(2.5)


def test_processing_times_keep_last_sixty() -> None:
    monitor = PoseDetectionPerformanceMonitor(clock=FakeClock())
    for i in range(100):
        monitor.record_frame(float(i))
    assert len(monitor.processing_times) == 60
    assert monitor.get_metrics().average_processing_time == pytest.approx(sum(range(40, 100)) / 60)

    monitor.reset()
    assert monitor.get_metrics().average_processing_time == 0.0
