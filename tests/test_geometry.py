import unittest

import numpy as np

from yolo_decode.config import CoordinateSpace
from yolo_decode.geometry import cxcywh_to_xyxy, is_normalized, map_boxes, map_keypoints


class TestIsNormalized(unittest.TestCase):
    def test_limit_is_inclusive(self) -> None:
        self.assertTrue(is_normalized(1.5, 0.2))
        self.assertFalse(is_normalized(1.51, 0.2))
        self.assertFalse(is_normalized(0.2, 320.0))
        self.assertTrue(is_normalized(1.0, 1.0, limit=1.0))

    def test_vectorized(self) -> None:
        out = is_normalized(np.array([0.5, 100.0]), np.array([0.5, 0.5]))
        np.testing.assert_array_equal(out, [True, False])


class TestMapBoxes(unittest.TestCase):
    def test_cxcywh_to_xyxy(self) -> None:
        out = cxcywh_to_xyxy(np.array([[10.0, 20.0, 4.0, 6.0]]))
        np.testing.assert_allclose(out, [[8.0, 17.0, 12.0, 23.0]])

    def test_normalized_scaled_to_source(self) -> None:
        boxes, valid = map_boxes(np.array([[0.5, 0.5, 0.2, 0.2]]), (640, 480), (640, 640))
        self.assertTrue(valid[0])
        np.testing.assert_allclose(boxes[0], [256.0, 192.0, 384.0, 288.0], atol=1e-3)

    def test_pixel_scaled_by_input_ratio(self) -> None:
        boxes, valid = map_boxes(np.array([[320.0, 320.0, 64.0, 64.0]]), (1280, 960), (640, 640))
        self.assertTrue(valid[0])
        np.testing.assert_allclose(boxes[0], [576.0, 432.0, 704.0, 528.0], atol=1e-3)

    def test_clipped_to_image(self) -> None:
        boxes, valid = map_boxes(np.array([[0.05, 0.5, 0.2, 0.2]]), (100, 100), (640, 640))
        self.assertTrue(valid[0])
        np.testing.assert_allclose(boxes[0], [0.0, 40.0, 15.0, 60.0], atol=1e-4)

    def test_degenerate_and_non_finite_are_invalid(self) -> None:
        raw = np.array(
            [
                [0.5, 0.5, 0.0, 0.2],
                [np.nan, 0.5, 0.2, 0.2],
                [0.5, np.inf, 0.2, 0.2],
                # entirely left of the image
                [-0.5, 0.5, 0.2, 0.2],
            ]
        )
        _, valid = map_boxes(raw, (100, 100), (640, 640))
        np.testing.assert_array_equal(valid, [False, False, False, False])

    def test_explicit_space_overrides_heuristic(self) -> None:
        # A small pixel-space box that the heuristic would read as normalized.
        raw = np.array([[1.0, 1.0, 1.0, 1.0]])
        auto, _ = map_boxes(raw, (640, 640), (640, 640))
        pixel, _ = map_boxes(raw, (640, 640), (640, 640), space=CoordinateSpace.PIXEL)
        np.testing.assert_allclose(auto[0], [320.0, 320.0, 640.0, 640.0], atol=1e-3)
        np.testing.assert_allclose(pixel[0], [0.5, 0.5, 1.5, 1.5], atol=1e-4)

        normalized, _ = map_boxes(np.array([[320.0, 320.0, 2.0, 2.0]]), (10, 10), (640, 640), space="normalized")
        # Forced normalized: everything is scaled by the source size and clipped.
        np.testing.assert_allclose(normalized[0], [10.0, 10.0, 10.0, 10.0])

    def test_heuristic_is_per_anchor(self) -> None:
        raw = np.array([[0.5, 0.5, 0.5, 0.5], [320.0, 320.0, 320.0, 320.0]])
        boxes, valid = map_boxes(raw, (200, 200), (640, 640))
        self.assertTrue(valid.all())
        np.testing.assert_allclose(boxes, [[50.0, 50.0, 150.0, 150.0], [50.0, 50.0, 150.0, 150.0]], atol=1e-3)


class TestMapKeypoints(unittest.TestCase):
    def test_mixed_spaces_and_clipping(self) -> None:
        kpts = np.array(
            [
                [
                    [0.25, 0.5, 0.9],
                    [320.0, 160.0, 0.3],
                    [2.0, 0.5, 0.7],
                    [-0.1, 0.5, 0.1],
                ]
            ]
        )
        out = map_keypoints(kpts, (200, 100), (640, 640))
        self.assertEqual(out.shape, (1, 4, 3))
        np.testing.assert_allclose(out[0, 0], [50.0, 50.0, 0.9], atol=1e-4)
        np.testing.assert_allclose(out[0, 1], [100.0, 25.0, 0.3], atol=1e-4)
        # x > 1.0 makes the whole keypoint pixel-space
        np.testing.assert_allclose(out[0, 2], [0.625, 0.078125, 0.7], atol=1e-4)
        np.testing.assert_allclose(out[0, 3], [0.0, 50.0, 0.1], atol=1e-4)

    def test_input_not_modified(self) -> None:
        kpts = np.array([[[0.5, 0.5, 1.0]]], dtype=np.float32)
        map_keypoints(kpts, (10, 10), (640, 640))
        np.testing.assert_array_equal(kpts, [[[0.5, 0.5, 1.0]]])


if __name__ == "__main__":
    unittest.main()
