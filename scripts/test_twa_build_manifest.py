import json
import tempfile
import unittest
from pathlib import Path

import twa_build


class WebManifestTests(unittest.TestCase):
    def test_build_web_manifest_uses_config_fields(self):
        config = twa_build.TwaConfig(
            app_name="X",
            short_name="X",
            start_url="https://x/",
            display_mode="fullscreen",
            orientation="landscape",
            theme_color="#111",
            background_color="#fff",
            icons=[],
        )

        manifest = twa_build.build_web_manifest(config)

        self.assertEqual(
            manifest,
            {
                "name": "X",
                "short_name": "X",
                "start_url": "https://x/",
                "display": "fullscreen",
                "orientation": "landscape",
                "theme_color": "#111",
                "background_color": "#fff",
                "icons": [],
            },
        )

    def test_build_web_manifest_default_icons_are_not_shared(self):
        config = twa_build.TwaConfig()
        manifest = twa_build.build_web_manifest(config)
        manifest["icons"][0]["src"] = "changed.png"

        self.assertEqual(config.icons[0]["src"], "icon-192.png")
        self.assertEqual(twa_build.DEFAULT_ICONS[0]["src"], "icon-192.png")
        self.assertEqual([icon["sizes"] for icon in config.icons], ["192x192", "512x512"])

    def test_write_web_manifest_creates_parents_and_round_trips(self):
        fields = {
            "name": "Brimind Chat",
            "short_name": "Brimind",
            "start_url": "https://ai.btimind.pro",
            "display": "standalone",
            "orientation": "portrait",
            "theme_color": "#1976d2",
            "background_color": "#ffffff",
            "icons": [{"src": "icon-192.png", "sizes": "192x192", "type": "image/png"}],
        }
        with tempfile.TemporaryDirectory() as temp_dir:
            manifest_path = Path(temp_dir) / "nested" / "assets" / "manifest.json"

            twa_build.write_web_manifest(str(manifest_path), fields)

            self.assertEqual(json.loads(manifest_path.read_text(encoding="utf-8")), fields)

    def test_write_web_manifest_overwrites_existing_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            manifest_path = Path(temp_dir) / "manifest.json"
            manifest_path.write_text('{"name": "stale", "extra": true}', encoding="utf-8")

            twa_build.write_web_manifest(str(manifest_path), {"name": "fresh"})

            self.assertEqual(json.loads(manifest_path.read_text(encoding="utf-8")), {"name": "fresh"})

    def test_stage_manifest_icons_copies_icon_for_relative_sources(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            temp = Path(temp_dir)
            icon = temp / "icon.png"
            icon.write_bytes(b"png-bytes")
            manifest_path = temp / "assets" / "manifest.json"
            manifest_path.parent.mkdir()
            icons = twa_build.DEFAULT_ICONS + [{"src": "https://cdn/icon.png", "sizes": "48x48"}]

            staged = twa_build.stage_manifest_icons(str(icon), str(manifest_path), icons)

            self.assertEqual(
                sorted(Path(path).name for path in staged),
                ["icon-192.png", "icon-512.png"],
            )
            self.assertEqual((temp / "assets" / "icon-512.png").read_bytes(), b"png-bytes")

    def test_stage_manifest_icons_skips_missing_icon(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            manifest_path = Path(temp_dir) / "manifest.json"
            staged = twa_build.stage_manifest_icons(
                str(Path(temp_dir) / "missing.png"), str(manifest_path), twa_build.DEFAULT_ICONS
            )

            self.assertEqual(staged, [])
            self.assertFalse((Path(temp_dir) / "icon-192.png").exists())


if __name__ == "__main__":
    unittest.main()
