"""Tests for TOML configuration loading."""

from __future__ import annotations

import os
import tempfile
import unittest
from datetime import timedelta
from pathlib import Path
from unittest import mock

from yagwt.config import Config, load_config
from yagwt.exceptions import ErrorCode, WorkspaceError


class LoadConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.base = Path(tmp.name)
        self.repo = self.base / "repo"
        (self.repo / ".yagwt").mkdir(parents=True)
        env = mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": str(self.base / "xdg")})
        env.start()
        self.addCleanup(env.stop)
        os.environ.pop("YAGWT_CONFIG", None)

    def _write(self, path: Path, text: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path

    def test_defaults_without_any_file(self) -> None:
        config = load_config(self.repo)

        self.assertEqual(config.workspace.root_strategy, "sibling")
        self.assertEqual(config.workspace.root_dir, ".workspaces")
        self.assertEqual(config.policies["default"].idle_threshold, timedelta(days=30))
        self.assertEqual(config.policies["aggressive"].on_dirty, "stash")
        self.assertIsNone(config.source)

    def test_repo_file_overrides_field_by_field(self) -> None:
        path = self._write(
            self.repo / ".yagwt" / "config.toml",
            """
[workspace]
rootStrategy = "inside"

[cleanup.policies.default]
idleThreshold = "14d"
onDirty = "patch"

[hooks]
postCreate = "scripts/setup.sh"
""",
        )

        config = load_config(self.repo)

        self.assertEqual(config.source, path)
        self.assertEqual(config.workspace.root_strategy, "inside")
        self.assertEqual(config.workspace.root_dir, ".workspaces")
        self.assertEqual(config.policies["default"].idle_threshold, timedelta(days=14))
        self.assertEqual(config.policies["default"].on_dirty, "patch")
        self.assertTrue(config.policies["default"].respect_pinned)
        self.assertEqual(config.policies["conservative"], Config().policies["conservative"])
        self.assertEqual(config.hooks.post_create, "scripts/setup.sh")

    def test_explicit_path_wins_over_env_and_repo(self) -> None:
        self._write(self.repo / ".yagwt" / "config.toml", '[workspace]\nrootDir = "from-repo"\n')
        env_file = self._write(self.base / "env.toml", '[workspace]\nrootDir = "from-env"\n')
        explicit = self._write(self.base / "explicit.toml", '[workspace]\nrootDir = "explicit"\n')

        with mock.patch.dict(os.environ, {"YAGWT_CONFIG": str(env_file)}):
            self.assertEqual(load_config(self.repo).workspace.root_dir, "from-env")
            self.assertEqual(load_config(self.repo, explicit).workspace.root_dir, "explicit")

    def test_user_config_is_last_resort(self) -> None:
        self._write(self.base / "xdg" / "yagwt" / "config.toml", '[workspace]\nnameTemplate = "wt-{branch}"\n')

        self.assertEqual(load_config(self.repo).workspace.name_template, "wt-{branch}")

    def test_invalid_values_are_config_errors(self) -> None:
        cases = [
            '[workspace]\nrootStrategy = "elsewhere"\n',
            '[cleanup.policies.default]\nonDirty = "force"\n',
            '[cleanup.policies.default]\nidleThreshold = "soon"\n',
            "[workspace\n",
        ]
        for text in cases:
            with self.subTest(text=text):
                self._write(self.repo / ".yagwt" / "config.toml", text)
                with self.assertRaises(WorkspaceError) as ctx:
                    load_config(self.repo)
                self.assertEqual(ctx.exception.code, ErrorCode.CONFIG)


if __name__ == "__main__":
    unittest.main()
