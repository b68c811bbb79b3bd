import os
import tempfile
import unittest
from datetime import datetime, timezone

from utils.path_time import (
    PLACEHOLDER_OUTPUT_DIR,
    choose_output_dir,
    format_snapshot_filename,
    resolve_output_dir,
)


class TestOutputDirPolicy(unittest.TestCase):
    def test_default_when_saving_disabled(self):
        self.assertEqual(
            choose_output_dir("/data", False, "/custom"),
            os.path.join("/data", "screenshots"),
        )

    def test_placeholder_and_empty_use_default(self):
        for value in ("", "   ", PLACEHOLDER_OUTPUT_DIR):
            with self.subTest(value=value):
                self.assertEqual(
                    choose_output_dir("/data", True, value),
                    os.path.join("/data", "screenshots"),
                )

    def test_configured_folder(self):
        self.assertEqual(choose_output_dir("/data", True, "/shots"), "/shots")
        self.assertEqual(
            choose_output_dir("/data", True, "shots/live"),
            os.path.join("/data", "shots/live"),
        )

    def test_unwritable_folder_falls_back_to_temp(self):
        with tempfile.TemporaryDirectory() as tmp:
            blocker = os.path.join(tmp, "file")
            with open(blocker, "w") as f:
                f.write("x")
            folder = resolve_output_dir(blocker, False, "")
            self.assertEqual(folder, tempfile.gettempdir())

    def test_resolve_creates_folder(self):
        with tempfile.TemporaryDirectory() as tmp:
            folder = resolve_output_dir(tmp, True, "nested/out")
            self.assertTrue(os.path.isdir(folder))

    def test_snapshot_filename(self):
        ts = datetime(2024, 5, 6, 7, 8, 9, 123000, tzinfo=timezone.utc)
        self.assertEqual(
            format_snapshot_filename(7, "png", ts),
            "snapshot_2024-05-06T07-08-09.123Z_00007.png",
        )


if __name__ == "__main__":
    unittest.main()
