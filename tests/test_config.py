import json
import tempfile
import unittest
from pathlib import Path

from Edge_Detection_Pipeline.config import (
    DetectorProfile,
    load_detector_profile,
    read_model_name_from_config,
    resolve_model_path,
)
from Edge_Detection_Pipeline.run_config import apply_run_config, collect_cli_dests
from Edge_Detection_Pipeline.runner import _parse_ort_providers, build_parser, resolve_model, resolve_profile
from edge_yolo_kit.metadata import load_class_names


class TestDetectorProfile(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, payload, name: str = "profile.json") -> Path:
        path = self.root / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_defaults_match_device_build(self) -> None:
        profile = DetectorProfile()
        cfg = profile.decode_config()
        self.assertEqual(cfg.input_size, 192)
        self.assertEqual(cfg.reg_max, 16)
        self.assertAlmostEqual(cfg.conf_threshold, 0.30)
        self.assertEqual(cfg.max_detections, 20)
        self.assertEqual(profile.arena_bytes, 2 * 1024 * 1024)
        self.assertEqual(profile.resize_policy, "letterbox")

    def test_load_full_profile(self) -> None:
        (self.root / "labels.txt").write_text("person\nhelmet\n", encoding="utf-8")
        path = self._write(
            {
                "schema_version": 1,
                "input_size": 224,
                "reg_max": 8,
                "num_classes": 2,
                "conf_threshold": 0.5,
                "max_detections": 5,
                "resize_policy": "distort",
                "input_convention": "raw",
                "pad_value": 114,
                "arena_bytes": 1048576,
                "memory": {"fast_bytes": 1024, "bulk_bytes": 4194304},
                "diagnostics": {"class_scan": True, "top_k": 3},
                "labels": "labels.txt",
            }
        )
        profile = load_detector_profile(path)
        self.assertEqual(profile.input_size, 224)
        self.assertEqual(profile.decode_config().num_classes, 2)
        self.assertEqual(profile.resize_policy, "distort")
        self.assertEqual(profile.memory.fast_bytes, 1024)
        self.assertEqual(profile.memory.large_threshold, 16 * 1024)
        self.assertTrue(profile.diagnostics.class_scan)
        self.assertEqual(profile.diagnostics.top_k, 3)
        self.assertEqual(Path(profile.labels), (self.root / "labels.txt").resolve())

    def test_rejects_unknown_and_invalid(self) -> None:
        cases = {
            "unknown key": {"schema_version": 1, "nms_iou": 0.5},
            "missing schema": {"input_size": 192},
            "bad schema": {"schema_version": 2},
            "bad policy": {"schema_version": 1, "resize_policy": "stretch"},
            "bad convention": {"schema_version": 1, "input_convention": "float"},
            "bool as int": {"schema_version": 1, "input_size": True},
            "threshold": {"schema_version": 1, "conf_threshold": 1.2},
            "memory key": {"schema_version": 1, "memory": {"psram": 1}},
            "diagnostics type": {"schema_version": 1, "diagnostics": {"class_scan": 1}},
        }
        for name, payload in cases.items():
            with self.subTest(name):
                with self.assertRaises(ValueError):
                    load_detector_profile(self._write(payload))

    def test_missing_or_malformed_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_detector_profile(self.root / "nope.json")
        path = self.root / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_detector_profile(path)


class TestModelConfigHeader(unittest.TestCase):
    def test_reads_model_define(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            header = Path(tmp) / "model_config.h"
            header.write_text(
                '// generated\n#define INPUT_SIZE 192\n  #define MODEL "det_int8.tflite"\n#define MODEL "other.tflite"\n',
                encoding="utf-8",
            )
            self.assertEqual(read_model_name_from_config(header), "det_int8.tflite")
            self.assertEqual(resolve_model_path(header, Path("Models")), Path("Models") / "det_int8.tflite")

    def test_missing_define(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            header = Path(tmp) / "model_config.h"
            header.write_text("#define MODEL_DIR \"/sdcard\"\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                read_model_name_from_config(header)
            with self.assertRaises(FileNotFoundError):
                read_model_name_from_config(Path(tmp) / "absent.h")


class TestClassNames(unittest.TestCase):
    def test_names_mapping(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "data.yaml"
            path.write_text("path: data\nnames:\n  0: person\n  1: 'hard hat'\n", encoding="utf-8")
            self.assertEqual(load_class_names(str(path)), {0: "person", 1: "hard hat"})

    def test_one_label_per_line(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "labels.txt"
            path.write_text("# classes\nperson\n\nhelmet\nvest\n", encoding="utf-8")
            self.assertEqual(load_class_names(str(path)), {0: "person", 1: "helmet", 2: "vest"})


class TestRunConfig(unittest.TestCase):
    def _apply(self, argv, payload):
        parser = build_parser()
        args = parser.parse_args(argv)
        apply_run_config(args=args, payload=payload, cli_dests=collect_cli_dests(parser, argv), parser=parser)
        return args

    def test_command_line_wins(self) -> None:
        args = self._apply(["--conf", "0.6"], {"conf": 0.4, "max_frames": 10, "save_canvas": True})
        self.assertAlmostEqual(args.conf, 0.6)
        self.assertEqual(args.max_frames, 10)
        self.assertTrue(args.save_canvas)

    def test_equals_form_counts_as_given(self) -> None:
        args = self._apply(["--imgsz=224"], {"imgsz": 192})
        self.assertEqual(args.imgsz, 224)

    def test_source_block(self) -> None:
        args = self._apply([], {"source": {"images": "captures"}, "model": "Models/det.tflite"})
        self.assertEqual(args.images, "captures")
        self.assertEqual(args.model, "Models/det.tflite")

    def test_onnx_providers_list(self) -> None:
        args = self._apply([], {"onnx_providers": ["CUDAExecutionProvider", "CPUExecutionProvider"]})
        self.assertEqual(args.onnx_providers, "CUDAExecutionProvider,CPUExecutionProvider")
        self.assertEqual(_parse_ort_providers(" `CPUExecutionProvider`, "), ["CPUExecutionProvider"])

    def test_rejects_bad_payloads(self) -> None:
        cases = [
            {"nms": 0.5},
            {"config": "other.json"},
            {"source": {"images": "a", "video": "b.mp4"}},
            {"source": {"images": "a"}, "video": "b.mp4"},
            {"source": {"webcam": "0"}},
            {"max_frames": 1.5},
            {"save_jpeg": "yes"},
        ]
        for payload in cases:
            with self.subTest(payload=payload):
                with self.assertRaises(ValueError):
                    self._apply([], payload)


class TestRunnerResolution(unittest.TestCase):
    def test_profile_overrides(self) -> None:
        args = build_parser().parse_args(
            ["--imgsz", "224", "--conf", "0.45", "--resize-policy", "crop", "--verbose-diagnostics"]
        )
        profile = resolve_profile(args)
        self.assertEqual(profile.input_size, 224)
        self.assertAlmostEqual(profile.conf_threshold, 0.45)
        self.assertEqual(profile.resize_policy, "crop")
        self.assertEqual(profile.diagnostics.top_k, 5)
        self.assertEqual(profile.reg_max, 16)

    def test_invalid_override_is_rejected(self) -> None:
        args = build_parser().parse_args(["--conf", "1.5"])
        with self.assertRaises(ValueError):
            resolve_profile(args)

    def test_model_resolution(self) -> None:
        parser = build_parser()
        self.assertEqual(resolve_model(parser.parse_args(["--model", "m.tflite"])), Path("m.tflite"))
        with self.assertRaises(ValueError):
            resolve_model(parser.parse_args([]))
        with self.assertRaises(ValueError):
            resolve_model(parser.parse_args(["--model", "m.tflite", "--model-config", "cfg.h"]))

        with tempfile.TemporaryDirectory() as tmp:
            header = Path(tmp) / "model_config.h"
            header.write_text('#define MODEL "det.tflite"\n', encoding="utf-8")
            args = parser.parse_args(["--model-config", str(header), "--model-dir", "/sdcard/models"])
            self.assertEqual(resolve_model(args), Path("/sdcard/models/det.tflite"))

    def test_sources_are_mutually_exclusive(self) -> None:
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["--images", "a", "--video", "b.mp4"])


if __name__ == "__main__":
    unittest.main()
