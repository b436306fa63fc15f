import io
import json
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent))

import twa_manifest_patch as patcher


class TwaManifestPatchTests(unittest.TestCase):
    def _run_main(self, argv: list[str]) -> tuple[int, str]:
        stderr = io.StringIO()
        with mock.patch.object(sys, "argv", ["twa_manifest_patch.py"] + argv), redirect_stdout(
            io.StringIO()
        ), redirect_stderr(stderr):
            exit_code = patcher.main()
        return exit_code, stderr.getvalue()

    def test_parse_field_assignment_decodes_json_values(self):
        self.assertEqual(patcher.parse_field_assignment("appVersionCode=3"), ("appVersionCode", 3))
        self.assertEqual(patcher.parse_field_assignment("enableSiteSettingsShortcut=false"), ("enableSiteSettingsShortcut", False))
        self.assertEqual(patcher.parse_field_assignment("appVersionName=1.0.2"), ("appVersionName", "1.0.2"))
        with self.assertRaises(ValueError):
            patcher.parse_field_assignment("missing-separator")

    def test_main_applies_config_file_and_extra_fields(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            temp = Path(temp_dir)
            manifest = temp / "twa-manifest.json"
            manifest.write_text(json.dumps({"appVersion": "2", "name": "old"}), encoding="utf-8")
            config = temp / "twa-config.json"
            config.write_text(
                json.dumps({"app_name": "Shop", "package_id": "com.example.shop", "web_url": "https://shop.example"}),
                encoding="utf-8",
            )

            exit_code, _ = self._run_main(
                ["--manifest", str(manifest), "--config", str(config), "--set", "appVersionCode=5"]
            )

            data = json.loads(manifest.read_text(encoding="utf-8"))

        self.assertEqual(exit_code, 0)
        self.assertEqual(data["appVersion"], "2")
        self.assertEqual(data["appVersionCode"], 5)
        self.assertEqual(data["name"], "Shop")
        self.assertEqual(data["launcherName"], "Shop")
        self.assertEqual(data["packageId"], "com.example.shop")
        self.assertEqual(data["host"], "shop.example")

    def test_main_fails_when_project_not_initialized(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            manifest = Path(temp_dir) / "twa-manifest.json"
            exit_code, stderr = self._run_main(
                ["--manifest", str(manifest), "--config", str(Path(temp_dir) / "missing.json")]
            )

            self.assertFalse(manifest.exists())

        self.assertEqual(exit_code, 1)
        self.assertIn("run bubblewrap init first", stderr)

    def test_main_fails_on_corrupt_manifest(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            manifest = Path(temp_dir) / "twa-manifest.json"
            manifest.write_text("{broken", encoding="utf-8")
            exit_code, stderr = self._run_main(
                ["--manifest", str(manifest), "--config", str(Path(temp_dir) / "missing.json")]
            )

        self.assertEqual(exit_code, 1)
        self.assertIn("[FAIL]", stderr)


if __name__ == "__main__":
    unittest.main()
