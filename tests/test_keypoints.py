import unittest

from yolo_decode.keypoints import COCO_KEYPOINT_NAMES, COCO_SKELETON, skeleton_segments, visible_keypoints
from yolo_decode.types import Detection, Keypoint


def _person(scores) -> Detection:
    kpts = tuple(Keypoint(float(i), float(i), s) for i, s in enumerate(scores))
    return Detection(0.0, 0.0, 100.0, 100.0, 0.9, keypoints=kpts)


class TestKeypoints(unittest.TestCase):
    def test_skeleton_indices(self) -> None:
        self.assertEqual(len(COCO_KEYPOINT_NAMES), 17)
        self.assertEqual(len(COCO_SKELETON), 16)
        for a, b in COCO_SKELETON:
            self.assertLess(a, 17)
            self.assertLess(b, 17)

    def test_visibility_is_strict(self) -> None:
        self.assertFalse(Keypoint(0.0, 0.0, 0.5).is_visible())
        self.assertTrue(Keypoint(0.0, 0.0, 0.51).is_visible())

    def test_visible_keypoints(self) -> None:
        scores = [0.0] * 17
        scores[0] = 0.9
        scores[16] = 0.7
        visible = visible_keypoints(_person(scores))
        self.assertEqual([i for i, _ in visible], [0, 16])
        self.assertEqual(visible_keypoints(Detection(0, 0, 1, 1, 0.5)), [])

    def test_segments_need_both_ends_visible(self) -> None:
        scores = [0.0] * 17
        for i in (5, 6, 7):
            scores[i] = 0.9
        segments = skeleton_segments(_person(scores))
        pairs = [(int(a.x), int(b.x)) for a, b in segments]
        self.assertEqual(pairs, [(5, 6), (5, 7)])


if __name__ == "__main__":
    unittest.main()
