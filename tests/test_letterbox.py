import math
import unittest

import numpy as np

from edge_yolo_kit.errors import DecodeFailure
from edge_yolo_kit.letterbox import (
    aspect_crop_resize,
    center_crop,
    distort_resize,
    frame_to_rgb,
    letterbox,
    normalize_frame,
)
from edge_yolo_kit.types import Detection, PackedFrame, ResizePolicy

S = 192


def _gradient(w: int, h: int) -> np.ndarray:
    """R encodes x // 2, G encodes y // 2, B is constant."""

    img = np.zeros((h, w, 3), dtype=np.uint8)
    img[..., 0] = (np.arange(w) // 2 % 256)[None, :]
    img[..., 1] = (np.arange(h) // 2 % 256)[:, None]
    img[..., 2] = 200
    return img


class TestLetterbox(unittest.TestCase):
    def test_output_is_square_with_min_scale_and_centered_padding(self) -> None:
        for w, h in [(320, 240), (240, 320), (192, 192), (100, 37), (37, 100), (640, 480), (1, 500), (1000, 3)]:
            with self.subTest(w=w, h=h):
                res = letterbox(np.full((h, w, 3), 255, dtype=np.uint8), S)
                self.assertEqual(res.pixels.shape, (S, S, 3))
                scale = min(S / w, S / h)
                self.assertAlmostEqual(res.scale_x, scale)
                self.assertAlmostEqual(res.scale_y, scale)
                new_w = min(S, max(1, int(math.floor(w * scale + 0.5))))
                new_h = min(S, max(1, int(math.floor(h * scale + 0.5))))
                self.assertEqual(res.pad, ((S - new_w) // 2, (S - new_h) // 2))

    def test_known_geometry(self) -> None:
        res = letterbox(np.zeros((240, 320, 3), dtype=np.uint8), S)
        self.assertAlmostEqual(res.scale_x, 0.6)
        self.assertEqual(res.pad, (0.0, 24.0))

        res = letterbox(np.zeros((37, 100, 3), dtype=np.uint8), S)
        self.assertAlmostEqual(res.scale_x, 1.92)
        # round(37 * 1.92) = 71 rows of image, 121 rows of padding
        self.assertEqual(res.pad, (0.0, 60.0))

    def test_padding_is_black_and_image_region_is_filled(self) -> None:
        res = letterbox(np.full((240, 320, 3), 255, dtype=np.uint8), S)
        px = res.pixels
        self.assertTrue(np.all(px[:24] == 0))
        self.assertTrue(np.all(px[24:168] == 255))
        self.assertTrue(np.all(px[168:] == 0))

    def test_pad_value_and_reused_canvas(self) -> None:
        canvas = np.full((S, S, 3), 77, dtype=np.uint8)
        res = letterbox(np.full((240, 320, 3), 255, dtype=np.uint8), S, pad_value=114, out=canvas)
        self.assertIs(res.pixels, canvas)
        self.assertTrue(np.all(canvas[:24] == 114))
        self.assertTrue(np.all(canvas[24:168] == 255))

    def test_nearest_neighbour_sampling(self) -> None:
        img = _gradient(384, 192)
        res = letterbox(img, S)  # scale 0.5 -> every second column, pad_y 48
        self.assertEqual(res.pad, (0.0, 48.0))
        row = res.pixels[48 + 10]
        self.assertEqual(int(row[10, 0]), img[0, 20, 0])
        self.assertEqual(int(row[101, 0]), img[0, 202, 0])
        self.assertEqual(int(row[10, 1]), img[20, 0, 1])

    def test_rejects_bad_input(self) -> None:
        with self.assertRaises(TypeError):
            letterbox(np.zeros((10, 10, 3), dtype=np.float32), S)
        with self.assertRaises(ValueError):
            letterbox(np.zeros((10, 10), dtype=np.uint8), S)
        with self.assertRaises(ValueError):
            letterbox(np.zeros((10, 10, 3), dtype=np.uint8), S, out=np.zeros((S, S, 4), dtype=np.uint8))

    def test_to_source_maps_canvas_box_back(self) -> None:
        res = letterbox(np.zeros((240, 320, 3), dtype=np.uint8), S)
        det = res.to_source(Detection(x=30.0, y=30.0, w=60.0, h=30.0, score=0.9, class_id=2))
        self.assertAlmostEqual(det.x, 50.0)
        self.assertAlmostEqual(det.y, 10.0)
        self.assertAlmostEqual(det.w, 100.0)
        self.assertAlmostEqual(det.h, 50.0)
        self.assertEqual(det.class_id, 2)

        full = res.to_source(Detection(x=0.0, y=0.0, w=192.0, h=192.0, score=0.9, class_id=0))
        self.assertEqual(full.as_xyxy(), (0.0, 0.0, 319.0, 239.0))


class TestDistortResize(unittest.TestCase):
    def test_each_axis_maps_by_integer_floor(self) -> None:
        img = _gradient(100, 50)
        res = distort_resize(img, S)
        self.assertEqual(res.pixels.shape, (S, S, 3))
        self.assertEqual(res.pad, (0.0, 0.0))
        for dx in (0, 1, 57, 191):
            self.assertEqual(int(res.pixels[0, dx, 0]), img[0, dx * 100 // S, 0])
        for dy in (0, 3, 100, 191):
            self.assertEqual(int(res.pixels[dy, 0, 1]), img[dy * 50 // S, 0, 1])
        self.assertAlmostEqual(res.scale_x, S / 100)
        self.assertAlmostEqual(res.scale_y, S / 50)

    def test_upscale_of_single_pixel_fills_canvas(self) -> None:
        img = np.array([[[9, 8, 7]]], dtype=np.uint8)
        res = distort_resize(img, 8)
        self.assertTrue(np.all(res.pixels == np.array([9, 8, 7], dtype=np.uint8)))


class TestAspectCrop(unittest.TestCase):
    def test_short_side_fills_canvas_and_center_is_kept(self) -> None:
        img = _gradient(320, 240)
        res = aspect_crop_resize(img, S)
        self.assertEqual(res.pixels.shape, (S, S, 3))
        self.assertEqual(res.policy, ResizePolicy.CROP)
        self.assertAlmostEqual(res.scale_x, 0.8)
        # scaled width 256 -> 32 columns cropped on each side
        self.assertEqual(res.pad, (-32.0, 0.0))
        # canvas column 10 samples source column int(42 / 0.8) = 52
        self.assertEqual(int(res.pixels[0, 10, 0]), img[0, 52, 0])

    def test_center_crop(self) -> None:
        img = _gradient(10, 6)
        crop = center_crop(img, 4, 2)
        self.assertEqual(crop.shape, (2, 4, 3))
        self.assertTrue(np.array_equal(crop, img[2:4, 3:7]))
        with self.assertRaises(ValueError):
            center_crop(img, 11, 2)


class TestFrameNormalization(unittest.TestCase):
    def test_packed_frame_goes_through_expansion_and_resize(self) -> None:
        packed = np.full((240, 320), 0xF800, dtype=np.uint16)
        res = normalize_frame(PackedFrame(pixels=packed, width=320, height=240), S, "letterbox")
        self.assertEqual(res.pixels[100, 100].tolist(), [255, 0, 0])
        self.assertEqual(res.pixels[0, 0].tolist(), [0, 0, 0])
        self.assertEqual(res.source_size, (320, 240))

    def test_packed_frame_with_wrong_dimensions_is_a_decode_failure(self) -> None:
        frame = PackedFrame(pixels=np.zeros((4, 5), dtype=np.uint16), width=4, height=4)
        with self.assertRaises(DecodeFailure):
            frame_to_rgb(frame)

    def test_unknown_frame_type(self) -> None:
        with self.assertRaises(TypeError):
            frame_to_rgb(np.zeros((4, 4, 3), dtype=np.uint8))


if __name__ == "__main__":
    unittest.main()
