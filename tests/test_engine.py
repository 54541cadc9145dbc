import threading
import unittest

import numpy as np

from yolo_decode.config import EngineConfig, NmsMode
from yolo_decode.engine import FrameResult, PostprocessEngine
from yolo_decode.layout import LayoutVariant, UnsupportedLayoutError


def _tensor(features: int, anchors: int, columns: dict) -> np.ndarray:
    out = np.zeros((1, features, anchors), dtype=np.float32)
    for anchor, values in columns.items():
        out[0, : len(values), anchor] = values
    return out


class TestPostprocessEngine(unittest.TestCase):
    def test_single_class_end_to_end(self) -> None:
        out = _tensor(5, 4, {2: [0.5, 0.5, 0.2, 0.2, 0.9]})
        engine = PostprocessEngine.for_outputs(out.shape, cfg=EngineConfig(confidence_threshold=0.5))
        self.assertEqual(engine.layout.variant, LayoutVariant.BOX)

        result = engine.process(out, (640, 480))
        self.assertIsInstance(result, FrameResult)
        self.assertEqual(result.candidate_count, 1)
        self.assertIsNone(result.mask)
        (det,) = result.detections
        np.testing.assert_allclose(det.as_xyxy(), (256.0, 192.0, 384.0, 288.0), atol=1e-3)
        self.assertAlmostEqual(det.score, 0.9, places=5)
        self.assertEqual(det.label, "class_0")

    def test_multi_class_with_labels(self) -> None:
        out = _tensor(
            6,
            64,
            {
                0: [0.5, 0.5, 0.2, 0.2, 0.9, 0.1],
                1: [0.51, 0.5, 0.2, 0.2, 0.1, 0.8],
                2: [0.52, 0.5, 0.2, 0.2, 0.85, 0.1],
            },
        )
        cfg = EngineConfig(nms_mode=NmsMode.CLASS_PARTITIONED)
        engine = PostprocessEngine.for_outputs(out.shape, cfg=cfg, labels=["fire", "smoke"])
        self.assertFalse(engine.layout.has_objectness)

        result = engine.process([out], (100, 100))
        self.assertEqual(result.candidate_count, 3)
        self.assertEqual([(d.label, round(d.score, 2)) for d in result.detections], [("fire", 0.9), ("smoke", 0.8)])

    def test_segmentation_end_to_end(self) -> None:
        out = _tensor(7, 4, {1: [0.5, 0.5, 0.5, 0.5, 0.9, 1.0, 0.0]})
        protos = np.zeros((1, 2, 2, 2), dtype=np.float32)
        protos[0, :, 0, 0] = 5.0
        protos[0, :, 1, 0] = -5.0
        engine = PostprocessEngine.for_outputs(out.shape, protos.shape)
        self.assertEqual(engine.layout.variant, LayoutVariant.SEGMENTATION)

        result = engine.process([out, protos], (4, 4))
        self.assertEqual(len(result.detections), 1)
        self.assertEqual((result.mask.width, result.mask.height), (4, 4))
        np.testing.assert_array_equal(result.mask.alpha, [[255, 255, 0, 0]] * 4)

        with self.assertRaises(ValueError):
            engine.process(out, (4, 4))

    def test_segmentation_without_detections_has_no_mask(self) -> None:
        out = _tensor(7, 4, {})
        protos = np.zeros((1, 2, 2, 2), dtype=np.float32)
        engine = PostprocessEngine.for_outputs(out.shape, protos.shape)
        result = engine.process([out, protos], (4, 4))
        self.assertEqual(result.detections, [])
        self.assertIsNone(result.mask)

    def test_frame_dropped_while_in_flight(self) -> None:
        out = _tensor(5, 4, {2: [0.5, 0.5, 0.2, 0.2, 0.9]})
        engine = PostprocessEngine.for_outputs(out.shape)

        with engine._in_flight:
            self.assertTrue(engine.busy)
            self.assertIsNone(engine.process(out, (640, 480)))
        self.assertEqual(engine.dropped_frames, 1)
        self.assertFalse(engine.busy)
        self.assertIsNotNone(engine.process(out, (640, 480)))

    def test_concurrent_drops_are_all_counted(self) -> None:
        out = _tensor(5, 4, {})
        engine = PostprocessEngine.for_outputs(out.shape)
        threads, calls = 8, 250

        def submit():
            for _ in range(calls):
                engine.process(out, (64, 64))

        with engine._in_flight:
            workers = [threading.Thread(target=submit) for _ in range(threads)]
            for t in workers:
                t.start()
            for t in workers:
                t.join()
        self.assertEqual(engine.dropped_frames, threads * calls)

    def test_default_config_is_not_shared(self) -> None:
        first = PostprocessEngine.for_outputs((1, 5, 4))
        second = PostprocessEngine.for_outputs((1, 5, 4))
        self.assertIsNot(first.cfg, second.cfg)
        self.assertIsNot(PostprocessEngine(first.layout).cfg, first.cfg)

    def test_orientation_from_config(self) -> None:
        labels = [f"c{i}" for i in range(80)]
        engine = PostprocessEngine.for_outputs((1, 84, 10), labels=labels)
        self.assertEqual((engine.layout.feature_count, engine.layout.num_classes), (84, 80))

        engine = PostprocessEngine.for_outputs((1, 10, 84), cfg=EngineConfig(channels_first=False))
        self.assertFalse(engine.layout.channels_first)
        self.assertEqual((engine.layout.feature_count, engine.layout.anchor_count), (84, 10))

        out = np.zeros((1, 10, 84), dtype=np.float32)
        out[0, 3, :6] = [0.5, 0.5, 0.2, 0.2, 0.9, 1.0]
        (det,) = engine.process(out, (100, 100)).detections
        self.assertAlmostEqual(det.score, 0.9, places=5)

    def test_close_is_idempotent_and_final(self) -> None:
        out = _tensor(5, 4, {2: [0.5, 0.5, 0.2, 0.2, 0.9]})
        with PostprocessEngine.for_outputs(out.shape) as engine:
            engine.process(out, (640, 480))
        self.assertTrue(engine.closed)
        engine.close()

        with self.assertRaises(RuntimeError):
            engine.process(out, (640, 480))
        self.assertEqual(engine.smoothed().detections, [])

    def test_smoothed_over_frames(self) -> None:
        engine = PostprocessEngine.for_outputs((1, 5, 4))
        engine.process(_tensor(5, 4, {0: [0.5, 0.5, 0.2, 0.2, 0.6]}), (100, 100), timestamp=1.0)
        engine.process(_tensor(5, 4, {0: [0.52, 0.5, 0.2, 0.2, 0.8]}), (100, 100), timestamp=2.0)

        (det,) = engine.smoothed().detections
        self.assertAlmostEqual(det.x1, 41.0, places=3)
        self.assertAlmostEqual(det.score, 0.7, places=5)

    def test_bad_inputs(self) -> None:
        engine = PostprocessEngine.for_outputs((1, 5, 4))
        with self.assertRaises(ValueError):
            engine.process(_tensor(5, 3, {}), (100, 100))
        with self.assertRaises(ValueError):
            engine.process(_tensor(5, 4, {}), (0, 100))
        with self.assertRaises(ValueError):
            engine.process([], (100, 100))
        with self.assertRaises(UnsupportedLayoutError):
            PostprocessEngine.for_outputs((1, 4, 8400))

    def test_pose_end_to_end_with_visibility_threshold(self) -> None:
        kpts = [0.0] * 51
        # left shoulder, right shoulder, left elbow
        kpts[15:18] = [0.4, 0.4, 0.9]
        kpts[18:21] = [0.6, 0.4, 0.6]
        kpts[21:24] = [0.3, 0.6, 0.9]
        out = _tensor(56, 64, {0: [0.5, 0.5, 0.5, 0.8, 0.9] + kpts})
        engine = PostprocessEngine.for_outputs(out.shape, cfg=EngineConfig(keypoint_visibility_threshold=0.7))
        self.assertEqual(engine.layout.variant, LayoutVariant.POSE)

        (det,) = engine.process(out, (100, 100)).detections
        self.assertEqual(len(det.keypoints), 17)
        self.assertEqual([i for i, _ in engine.visible_keypoints(det)], [5, 7])
        (segment,) = engine.skeleton(det)
        self.assertAlmostEqual(segment[0].x, 40.0, places=3)
        self.assertAlmostEqual(segment[1].y, 60.0, places=3)

    def test_label_mismatch_still_loads(self) -> None:
        with self.assertLogs("yolo_decode.layout", level="WARNING"):
            engine = PostprocessEngine.for_outputs((1, 7, 16), cfg=EngineConfig(has_objectness=False), labels=["a", "b"])
        self.assertEqual(engine.labels, ["a", "b"])
        self.assertEqual(engine.decoder.active_classes, 2)


if __name__ == "__main__":
    unittest.main()
