import unittest

import numpy as np

from edge_yolo_kit.errors import QuantizationConventionError
from edge_yolo_kit.quantize import (
    InputConvention,
    PixelQuantizer,
    dequantize,
    quantize,
    quantize_pixels,
    representable_range,
    resolve_input_convention,
)

QUANT_PARAMS = [
    (1.0 / 255.0, -128),
    (0.5, 0),
    (0.0235, 3),
    (0.1, -20),
    (1.0, -128),
    (2.0, 127),
]


class TestAffineQuantization(unittest.TestCase):
    def test_dequantize_then_quantize_reproduces_every_int8(self) -> None:
        q = np.arange(-128, 128, dtype=np.int16).astype(np.int8)
        for scale, zp in QUANT_PARAMS:
            with self.subTest(scale=scale, zero_point=zp):
                back = quantize(dequantize(q, scale, zp), scale, zp)
                self.assertEqual(back.dtype, np.int8)
                self.assertTrue(np.array_equal(back, q))

    def test_rounds_half_away_from_zero(self) -> None:
        q = quantize([0.5, -0.5, 1.5, -1.5, 2.5, -2.5, 0.49], 1.0, 0)
        self.assertEqual(q.tolist(), [1, -1, 2, -2, 3, -3, 0])

    def test_clamps_to_int8(self) -> None:
        q = quantize([1000.0, -1000.0, 127.4, -128.4], 1.0, 0)
        self.assertEqual(q.tolist(), [127, -128, 127, -128])

    def test_dequantize_is_exact_affine(self) -> None:
        v = dequantize(np.array([-128, 0, 5, 127], dtype=np.int8), 0.1, 5)
        self.assertTrue(np.allclose(v, [-13.3, -0.5, 0.0, 12.2]))

    def test_non_positive_scale_rejected(self) -> None:
        for bad in (0.0, -0.5, float("nan")):
            with self.subTest(scale=bad):
                with self.assertRaises(ValueError):
                    quantize([1.0], bad, 0)
        with self.assertRaises(ValueError):
            PixelQuantizer(0.0, 0, InputConvention.RAW_BYTE)

    def test_representable_range(self) -> None:
        lo, hi = representable_range(1.0 / 255.0, -128)
        self.assertAlmostEqual(lo, 0.0)
        self.assertAlmostEqual(hi, 1.0)


class TestPixelQuantization(unittest.TestCase):
    def test_unit_range_maps_bytes_to_full_int8_span(self) -> None:
        q = quantize_pixels(np.array([0, 128, 255]), 1.0 / 255.0, -128, InputConvention.UNIT_RANGE)
        self.assertEqual(q.tolist(), [-128, 0, 127])

    def test_raw_byte_quantizes_values_directly(self) -> None:
        q = quantize_pixels(np.array([0, 1, 128, 255]), 1.0, -128, InputConvention.RAW_BYTE)
        self.assertEqual(q.tolist(), [-128, -127, 0, 127])

    def test_lookup_table_matches_direct_formula(self) -> None:
        for convention, (scale, zp) in (
            (InputConvention.UNIT_RANGE, (1.0 / 255.0, -128)),
            (InputConvention.UNIT_RANGE, (0.0039, -120)),
            (InputConvention.RAW_BYTE, (1.0, -128)),
        ):
            quantizer = PixelQuantizer(scale, zp, convention)
            direct = quantize_pixels(np.arange(256), scale, zp, convention)
            self.assertTrue(np.array_equal(quantizer.table, direct))

    def test_writes_into_tensor_buffer(self) -> None:
        quantizer = PixelQuantizer(1.0 / 255.0, -128, "unit")
        pixels = np.zeros((4, 4, 3), dtype=np.uint8)
        pixels[..., 0] = 255
        out = np.zeros((1, 4, 4, 3), dtype=np.int8)
        res = quantizer(pixels, out=out)
        self.assertIs(res, out)
        self.assertTrue(np.all(out[..., 0] == 127))
        self.assertTrue(np.all(out[..., 1:] == -128))

    def test_rejects_non_byte_pixels(self) -> None:
        quantizer = PixelQuantizer(1.0, -128, "raw")
        with self.assertRaises(TypeError):
            quantizer(np.zeros((2, 2, 3), dtype=np.float32))
        with self.assertRaises(ValueError):
            quantizer(np.zeros((2, 2, 3), dtype=np.uint8), out=np.zeros((1, 3, 3, 3), dtype=np.int8))


class TestInputConvention(unittest.TestCase):
    def test_auto_detects_unit_range(self) -> None:
        self.assertIs(resolve_input_convention(1.0 / 255.0, -128), InputConvention.UNIT_RANGE)

    def test_auto_detects_raw_bytes(self) -> None:
        self.assertIs(resolve_input_convention(1.0, -128), InputConvention.RAW_BYTE)

    def test_ambiguous_range_is_refused(self) -> None:
        # Symmetric [-1, 1] input: neither convention fits.
        with self.assertRaises(QuantizationConventionError):
            resolve_input_convention(2.0 / 255.0, 0)

    def test_explicit_declaration_wins(self) -> None:
        self.assertIs(resolve_input_convention(2.0 / 255.0, 0, "raw"), InputConvention.RAW_BYTE)
        self.assertIs(resolve_input_convention(1.0, -128, InputConvention.UNIT_RANGE), InputConvention.UNIT_RANGE)


if __name__ == "__main__":
    unittest.main()
