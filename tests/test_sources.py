import logging
import tempfile
import unittest
from pathlib import Path

import numpy as np

from Edge_Detection_Pipeline.ingest import (
    DirectorySource,
    ImageSource,
    SequenceSource,
    SourceCapability,
    VideoCaptureSource,
    list_jpeg_files,
)
from Edge_Detection_Pipeline.logs import setup_logging
from edge_yolo_kit.errors import CaptureFailure
from edge_yolo_kit.types import CompressedFrame, PackedFrame


class TestDirectorySource(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "b").mkdir()
        (self.root / "a").mkdir()
        for rel, data in [
            ("b/002.jpg", b"b2"),
            ("a/010.JPEG", b"a10"),
            ("a/001.jpg", b"a1"),
            ("a/notes.txt", b"skip"),
            ("a/frame.png", b"skip"),
            ("000.jpeg", b"root"),
        ]:
            (self.root / rel).write_bytes(data)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_lists_jpegs_recursively_in_sorted_order(self) -> None:
        names = [p.relative_to(self.root).as_posix() for p in list_jpeg_files(self.root)]
        self.assertEqual(names, ["000.jpeg", "a/001.jpg", "a/010.JPEG", "b/002.jpg"])

    def test_captures_each_file_once_then_exhausts(self) -> None:
        source = DirectorySource(self.root)
        self.assertEqual(len(source), 4)
        self.assertTrue(source.supports(SourceCapability.COMPRESSED))
        self.assertTrue(source.supports(SourceCapability.FINITE))
        self.assertFalse(source.supports(SourceCapability.RELEASE))

        payloads = []
        while not source.exhausted:
            frame = source.capture()
            self.assertIsInstance(frame, CompressedFrame)
            self.assertEqual((frame.width, frame.height), (0, 0))
            payloads.append(frame.data)
        self.assertEqual(payloads, [b"root", b"a1", b"a10", b"b2"])
        self.assertEqual(source.last_path.name, "002.jpg")
        self.assertIsNone(source.capture())

    def test_unreadable_file_is_a_capture_failure(self) -> None:
        source = DirectorySource(self.root)
        source.files[0].unlink()
        with self.assertRaises(CaptureFailure):
            source.capture()
        self.assertEqual(source.capture().data, b"a1")

    def test_missing_directory(self) -> None:
        with self.assertRaises(FileNotFoundError):
            DirectorySource(self.root / "missing")


class TestSequenceSource(unittest.TestCase):
    def test_capabilities_follow_arguments(self) -> None:
        self.assertEqual(
            SequenceSource([]).capabilities,
            frozenset({SourceCapability.FINITE, SourceCapability.COMPRESSED}),
        )
        packed = SequenceSource([], packed=True, release_fn=lambda frame: None)
        self.assertTrue(packed.supports(SourceCapability.PACKED))
        self.assertTrue(packed.supports(SourceCapability.RELEASE))

    def test_none_is_a_miss_not_the_end(self) -> None:
        frame = PackedFrame(pixels=np.zeros((2, 2), dtype=np.uint16), width=2, height=2)
        source = SequenceSource([None, frame])
        self.assertIsNone(source.capture())
        self.assertFalse(source.exhausted)
        self.assertIs(source.capture(), frame)
        self.assertIsNone(source.capture())
        self.assertTrue(source.exhausted)

    def test_release_without_support(self) -> None:
        with self.assertRaises(NotImplementedError):
            SequenceSource([]).release(CompressedFrame(data=b"", width=0, height=0))

    def test_base_source_is_abstract(self) -> None:
        with ImageSource() as source:
            with self.assertRaises(NotImplementedError):
                source.capture()
            self.assertFalse(source.supports(SourceCapability.FINITE))


class TestVideoCaptureSource(unittest.TestCase):
    def test_unopenable_video_is_a_capture_failure(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(CaptureFailure):
                VideoCaptureSource(video=str(Path(tmp) / "missing.mp4"))

    def test_exactly_one_target(self) -> None:
        with self.assertRaises(ValueError):
            VideoCaptureSource(video="a.mp4", webcam=0)


def _reset_root_logging() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


class TestLogging(unittest.TestCase):
    def tearDown(self) -> None:
        _reset_root_logging()

    def test_file_handler_and_level(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log_path = Path(tmp) / "logs" / "run.log"
            setup_logging("debug", str(log_path))
            logging.getLogger("edge.test").debug("hello %d", 7)
            for handler in logging.getLogger().handlers:
                handler.flush()
            self.assertEqual(logging.getLogger().level, logging.DEBUG)
            text = log_path.read_text(encoding="utf-8")
            self.assertIn(" - edge.test - DEBUG - hello 7", text)
            _reset_root_logging()

    def test_unknown_level(self) -> None:
        with self.assertRaises(ValueError):
            setup_logging("chatty")


if __name__ == "__main__":
    unittest.main()
