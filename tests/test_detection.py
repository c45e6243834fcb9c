import pytest

from smartsafe.schemas.sensor import SensorSample, Vector3
from smartsafe.services.detection import AnomalyDetector, SignalSmoother, Verdict, magnitude


def _sample(accel=(0.0, 0.0, 9.8), gyro=(0.0, 0.0, 0.0), ts=0, **flags):
    return SensorSample(
        accelerometer=Vector3(x=accel[0], y=accel[1], z=accel[2]),
        gyroscope=Vector3(x=gyro[0], y=gyro[1], z=gyro[2]),
        timestamp=ts,
        **flags,
    )


def _classify(detector, sample, now_ms):
    return detector.classify(sample, Vector3(), now_ms)


def test_smoothed_z_is_trailing_mean_minus_offset():
    smoother = SignalSmoother(window=5, z_offset=5.0)
    zs = [10.0, 12.0, 8.0, 9.0, 11.0, 20.0, 4.0]
    for n, z in enumerate(zs, start=1):
        out = smoother.smooth(Vector3(z=z))
        window = zs[max(0, n - 5):n]
        assert out.z == pytest.approx(sum(window) / len(window) - 5.0)


def test_smoother_reset_starts_a_fresh_window():
    smoother = SignalSmoother()
    for _ in range(5):
        smoother.smooth(Vector3(x=100.0))
    smoother.reset()
    assert smoother.smooth(Vector3(x=1.0)).x == pytest.approx(1.0)


def test_magnitude():
    assert magnitude(Vector3(x=3.0, y=4.0, z=12.0)) == pytest.approx(13.0)


def test_theft_never_debounced(settings):
    detector = AnomalyDetector(settings)
    first = _classify(detector, _sample(accel=(40.0, 30.0, 10.0)), now_ms=1000)
    second = _classify(detector, _sample(accel=(40.0, 30.0, 10.0)), now_ms=1001)
    assert Verdict.THEFT in first
    assert Verdict.THEFT in second
    assert second.metadata["magnitude"] == pytest.approx(magnitude(Vector3(x=40.0, y=30.0, z=10.0)))
    # the first sample consumed the movement window
    assert Verdict.MOVEMENT in first
    assert Verdict.MOVEMENT not in second


def test_theft_threshold_is_strict(settings):
    detector = AnomalyDetector(settings)
    assert Verdict.THEFT not in _classify(detector, _sample(accel=(0.0, 0.0, 50.0)), now_ms=0)


def test_movement_cooldown(settings):
    detector = AnomalyDetector(settings)
    moving = _sample(accel=(6.0, 0.0, 9.8))
    assert _classify(detector, moving, now_ms=10_000).verdict == Verdict.MOVEMENT
    assert _classify(detector, moving, now_ms=14_999).verdict == Verdict.NONE
    assert _classify(detector, moving, now_ms=15_000).verdict == Verdict.NONE
    assert _classify(detector, moving, now_ms=15_001).verdict == Verdict.MOVEMENT


def test_movement_metadata_lists_exceeded_axes(settings):
    detector = AnomalyDetector(settings)
    result = _classify(detector, _sample(accel=(-6.0, 1.0, 9.8), gyro=(0.0, 2.5, -3.0)), now_ms=0)
    assert result.metadata["movement"] == {"accelX": -6.0, "gyroY": 2.5, "gyroZ": -3.0}


def test_z_axis_alone_is_not_movement(settings):
    detector = AnomalyDetector(settings)
    assert _classify(detector, _sample(accel=(0.0, 0.0, 30.0)), now_ms=0).verdict == Verdict.NONE


def test_ghost_is_edge_triggered(settings):
    detector = AnomalyDetector(settings)
    still = _sample(accel=(0.01, 0.01, 0.01), gyro=(0.01, 0.0, 0.0))
    verdicts = [Verdict.GHOST in _classify(detector, still, now_ms=i) for i in range(5)]
    assert verdicts == [True, False, False, False, False]

    # any non-still sample re-arms the latch
    _classify(detector, _sample(accel=(0.0, 0.0, 9.8)), now_ms=10)
    assert Verdict.GHOST in _classify(detector, still, now_ms=11)


def test_zero_filled_samples_never_look_like_ghost(settings):
    detector = AnomalyDetector(settings)
    gyro_only = _sample(accel=(0.0, 0.0, 0.0), gyro=(0.0, 0.0, 0.0), has_accelerometer=False)
    assert Verdict.GHOST not in _classify(detector, gyro_only, now_ms=0)
