import os
import tempfile
import unittest

from core.config import (
    ConfigError,
    LoadedConfig,
    build_pipeline_settings,
    load_config,
    load_config_file,
    validate_config,
)

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
DEFAULT_CONFIG_DIR = os.path.join(REPO_ROOT, "config")


def _write(path: str, text: str):
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


class TestConfigLoader(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def test_shipped_default_config_is_valid(self):
        cfg = load_config(DEFAULT_CONFIG_DIR)
        validate_config(cfg)
        self.assertEqual(cfg.overlay.port, 3456)
        self.assertEqual(cfg.throttle.max_triggers, 3)
        self.assertTrue(cfg.chat.permissions.everyone)

    def test_sections_override_defaults(self):
        path = os.path.join(self.dir, "main_test.yaml")
        _write(
            path,
            "obs:\n  port: 4460\n"
            "capture:\n  source: Game\n  native_size: true\n"
            "chat:\n  command: '!snap'\n  permissions:\n    everyone: false\n    vip: true\n",
        )
        cfg = load_config(self.dir)
        self.assertEqual(cfg.paths["main"], path)
        self.assertEqual(cfg.obs.port, 4460)
        self.assertEqual(cfg.obs.host, "localhost")
        settings = build_pipeline_settings(cfg)
        self.assertEqual(settings.connection.url, "ws://localhost:4460")
        self.assertTrue(settings.capture.native_size)
        self.assertEqual(settings.command, "!snap")
        self.assertFalse(settings.policy.everyone)
        self.assertTrue(settings.policy.vip)
        self.assertTrue(os.path.isabs(settings.output_dir.data_dir))

    def test_unknown_field_raises(self):
        path = os.path.join(self.dir, "main_bad.yaml")
        _write(path, "obs:\n  hostname: x\n")
        with self.assertRaises(ConfigError) as cm:
            load_config_file(path)
        self.assertIn("obs.hostname", str(cm.exception))

    def test_unknown_section_raises(self):
        path = os.path.join(self.dir, "main_bad.yaml")
        _write(path, "camera:\n  type: mock\n")
        with self.assertRaises(ConfigError):
            load_config_file(path)

    def test_missing_or_ambiguous_main_file(self):
        with self.assertRaises(ConfigError):
            load_config(self.dir)
        _write(os.path.join(self.dir, "main_a.yaml"), "{}\n")
        _write(os.path.join(self.dir, "main_b.yaml"), "{}\n")
        with self.assertRaises(ConfigError):
            load_config(self.dir)

    def test_invalid_yaml_raises_config_error(self):
        path = os.path.join(self.dir, "main_x.yaml")
        _write(path, "obs: [unclosed\n")
        with self.assertRaises(ConfigError):
            load_config_file(path)


class TestConfigValidation(unittest.TestCase):
    def test_defaults_pass(self):
        validate_config(LoadedConfig())

    def test_invalid_values_raise_config_error(self):
        cases = [
            ("obs.port", "obs", {"port": 70000}),
            ("obs.request_timeout_s", "obs", {"request_timeout_s": 0}),
            ("capture.image_format", "capture", {"image_format": "gif"}),
            ("capture.max_concurrent", "capture", {"max_concurrent": -1}),
            ("throttle.max_triggers", "throttle", {"max_triggers": 0}),
            ("overlay.animation_direction", "overlay", {"animation_direction": "up"}),
            ("webhook.url", "webhook", {"enabled": True, "url": ""}),
            ("chat.channel", "chat", {"enabled": True, "username": "u", "oauth_token": "t"}),
            ("chat.command", "chat", {"command": "!"}),
        ]
        for expected_name, target, patch in cases:
            with self.subTest(field=expected_name):
                cfg = LoadedConfig()
                obj = getattr(cfg, target)
                for k, v in patch.items():
                    setattr(obj, k, v)
                with self.assertRaises(ConfigError) as cm:
                    validate_config(cfg)
                self.assertIn(expected_name, str(cm.exception))


if __name__ == "__main__":
    unittest.main()
