"""Tests for simulated devices, result sinks and the scripted operator."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from mat_calibration.calibration.session import (
    CalibrationSessionController,
    CalibrationStep,
)
from mat_calibration.calibration.target import BULB_HEIGHT_CM
from mat_calibration.devices.simulated import (
    RecordingPoseSink,
    SimulatedController,
    SimulatedHead,
    SimulatedOperator,
    SimulatedTracker,
    TrackerList,
    YamlPoseSink,
)
from src.utils.fs import load_yaml
from src.utils.transforms import Pose

AIM = (0.0, BULB_HEIGHT_CM, 0.0)


@pytest.fixture
def tracker() -> SimulatedTracker:
    return SimulatedTracker.looking_at(4, (0.0, 60.0, -100.0), AIM)


class TestSimulatedTracker:
    def test_intrinsics(self, tracker: SimulatedTracker) -> None:
        assert tracker.pixel_extents() == (640.0, 480.0)
        K = tracker.intrinsic_matrix()
        np.testing.assert_allclose(K, [[550.0, 0, 320.0], [0, 550.0, 240.0], [0, 0, 1]])

    def test_aim_point_projects_to_image_centre(self, tracker: SimulatedTracker) -> None:
        u, v = tracker.project(AIM)
        assert (u, v) == pytest.approx((320.0, 240.0), abs=1e-6)

    def test_pixels_are_y_up(self, tracker: SimulatedTracker) -> None:
        _, v_low = tracker.project((0.0, BULB_HEIGHT_CM - 5.0, 0.0))
        _, v_high = tracker.project((0.0, BULB_HEIGHT_CM + 5.0, 0.0))
        assert v_high > v_low

    def test_point_behind_is_invisible(self, tracker: SimulatedTracker) -> None:
        assert tracker.project((0.0, 60.0, -200.0)) is None

    def test_point_outside_image_is_invisible(self, tracker: SimulatedTracker) -> None:
        assert tracker.project((500.0, BULB_HEIGHT_CM, 0.0)) is None

    def test_pose_matches_eye(self, tracker: SimulatedTracker) -> None:
        assert tracker.pose.position == pytest.approx((0.0, 60.0, -100.0))

    def test_noise_is_seeded(self) -> None:
        a = SimulatedTracker.looking_at(1, (0.0, 60.0, -100.0), AIM, noise_px=1.0, seed=3)
        b = SimulatedTracker.looking_at(1, (0.0, 60.0, -100.0), AIM, noise_px=1.0, seed=3)
        assert a.project(AIM) == b.project(AIM)
        assert a.project(AIM) != pytest.approx((320.0, 240.0), abs=1e-6)


class TestSimulatedController:
    def test_not_tracked_until_placed(self, tracker: SimulatedTracker) -> None:
        controller = SimulatedController([tracker])
        assert not controller.is_currently_tracked()
        assert controller.pixel_location_on_tracker(4) is None
        assert not controller.is_stable_and_gravity_aligned()

    def test_place_and_lift(self, tracker: SimulatedTracker) -> None:
        controller = SimulatedController([tracker])
        controller.place(AIM)
        assert controller.is_stable_and_gravity_aligned()
        assert controller.is_currently_tracked()
        assert controller.pixel_location_on_tracker(4) == pytest.approx((320.0, 240.0))
        assert controller.pixel_location_on_tracker(99) is None

        controller.lift()
        assert not controller.is_stable_and_gravity_aligned()
        assert controller.is_currently_tracked()


class TestSinks:
    def test_recording_sink(self) -> None:
        sink = RecordingPoseSink()
        sink.report_tracker_pose(1, Pose(position=(1.0, 2.0, 3.0)), Pose())
        sink.report_tracker_pose(2, Pose(), Pose(position=(0.0, 0.0, 1.0)))
        assert [r[0] for r in sink.reports] == [1, 2]
        assert sink.poses()[1][0].position == (1.0, 2.0, 3.0)

    def test_yaml_sink_writes_sorted_entries(self, tmp_path: Path) -> None:
        path = tmp_path / "out" / "tracker_poses.yaml"
        sink = YamlPoseSink(path)
        sink.report_tracker_pose(5, Pose(position=(1.0, 2.0, 3.0)), Pose())
        sink.report_tracker_pose(2, Pose(), Pose(position=(0.0, 0.0, 9.0)))

        data = load_yaml(path)
        assert [t["tracker_id"] for t in data["trackers"]] == [2, 5]
        five = data["trackers"][1]
        assert five["pose"]["position"] == [1.0, 2.0, 3.0]
        assert five["pose"]["orientation"] == [1.0, 0.0, 0.0, 0.0]
        assert Pose.from_dict(data["trackers"][0]["head_relative_pose"]).position == (
            0.0, 0.0, 9.0,
        )
        assert not path.with_suffix(".yaml.tmp").exists()


class TestSimulatedOperator:
    def _session(self, trackers, controller, head=None, sink=None):
        return CalibrationSessionController(
            controller, TrackerList(trackers), sink or RecordingPoseSink(), head,
            dwell_ms=200.0, samples_per_location=5,
        )

    def test_runs_to_success(self, tracker: SimulatedTracker) -> None:
        controller = SimulatedController([tracker])
        head = SimulatedHead()
        sink = RecordingPoseSink()
        session = self._session([tracker], controller, head, sink)
        session.enter()
        assert SimulatedOperator(controller, head).run(session) is CalibrationStep.SUCCESS
        assert len(sink.reports) == 1

    def test_fumble_is_recovered(self, tracker: SimulatedTracker) -> None:
        controller = SimulatedController([tracker])
        session = self._session([tracker], controller)
        session.enter()
        steps = []
        operator = SimulatedOperator(controller, fumble_locations=[2])
        while not session.step.is_terminal:
            operator.act(session)
            session.tick(len(steps) * 16.0)
            steps.append((session.step, session.location_index))

        assert session.step is CalibrationStep.SUCCESS
        # Bumped once at location 2: back to placement without advancing
        place_at_2 = [
            i for i, s in enumerate(steps)
            if s == (CalibrationStep.PLACE_CONTROLLER, 2)
            and i > 0 and steps[i - 1] == (CalibrationStep.RECORD_CONTROLLER, 2)
        ]
        assert len(place_at_2) == 1

    def test_tick_budget(self, tracker: SimulatedTracker) -> None:
        controller = SimulatedController([tracker])
        session = self._session([tracker], controller)
        session.enter()
        step = SimulatedOperator(controller).run(session, max_ticks=3)
        assert not step.is_terminal
