import unittest

import numpy as np

from yolo_decode.tensor_view import ProtoView, TensorView


class TestTensorView(unittest.TestCase):
    def test_from_buffer_channels_first(self) -> None:
        raw = np.arange(10, dtype=np.float32).tobytes()
        view = TensorView.from_buffer(raw, (1, 5, 2))

        self.assertEqual(view.feature_count, 5)
        self.assertEqual(view.anchor_count, 2)
        np.testing.assert_array_equal(view.channel(0), [0, 1])
        np.testing.assert_array_equal(view.anchor(1), [1, 3, 5, 7, 9])
        np.testing.assert_array_equal(view.channels(1, 3), [[2, 3], [4, 5]])

    def test_anchors_first_is_transposed(self) -> None:
        arr = np.arange(10, dtype=np.float32).reshape(1, 2, 5)
        view = TensorView(arr, channels_first=False)

        self.assertEqual(view.shape, (5, 2))
        np.testing.assert_array_equal(view.channel(0), [0, 5])
        np.testing.assert_array_equal(view.anchor(1), [5, 6, 7, 8, 9])

    def test_view_is_read_only(self) -> None:
        view = TensorView(np.zeros((1, 5, 3), dtype=np.float32))
        with self.assertRaises(ValueError):
            view.data[0, 0] = 1.0

    def test_rejects_batches_and_bad_buffers(self) -> None:
        with self.assertRaises(ValueError):
            TensorView(np.zeros((2, 5, 3), dtype=np.float32))
        with self.assertRaises(ValueError):
            TensorView(np.zeros((5,), dtype=np.float32))
        with self.assertRaises(ValueError):
            TensorView.from_buffer(np.zeros(9, dtype=np.float32).tobytes(), (1, 5, 2))


class TestProtoView(unittest.TestCase):
    def test_channels_last(self) -> None:
        arr = np.arange(24, dtype=np.float32).reshape(1, 2, 3, 4)
        protos = ProtoView(arr)
        self.assertEqual((protos.height, protos.width, protos.channels), (2, 3, 4))
        matrix = protos.as_matrix()
        self.assertEqual(matrix.shape, (6, 4))
        np.testing.assert_array_equal(matrix[4], arr[0, 1, 1])

    def test_channels_first_matches_channels_last(self) -> None:
        last = np.random.default_rng(0).normal(size=(1, 2, 3, 4)).astype(np.float32)
        first = np.transpose(last, (0, 3, 1, 2)).copy()

        a = ProtoView(last, channels_last=True)
        b = ProtoView(first, channels_last=False)
        self.assertEqual((b.height, b.width, b.channels), (2, 3, 4))
        np.testing.assert_array_equal(a.as_matrix(), b.as_matrix())

    def test_rejects_bad_shape(self) -> None:
        with self.assertRaises(ValueError):
            ProtoView(np.zeros((2, 2, 2, 2, 2), dtype=np.float32))


if __name__ == "__main__":
    unittest.main()
