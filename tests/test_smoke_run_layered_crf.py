from __future__ import annotations

import os
import subprocess
import sys
import unittest
from pathlib import Path

import yaml


REPO_ROOT = Path(__file__).resolve().parents[1]


class SmokeRunLayeredCrfTest(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        missing = []
        for m in ("torch", "numpy", "cv2", "scipy", "yaml", "tqdm"):
            try:
                __import__(m)
            except Exception:
                missing.append(m)
        if missing:
            raise unittest.SkipTest(f"依赖未安装，跳过 smoke test：missing={missing}。请先 `pip install -e .[test]`。")

        cls.env = dict(os.environ)
        cls.env["PYTHONPATH"] = str(REPO_ROOT / "src")

    def _run(self, cmd: list[str]) -> str:
        r = subprocess.run(
            cmd, cwd=str(REPO_ROOT), env=self.env, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True
        )
        if r.returncode != 0:
            self.fail(f"smoke 失败：{' '.join(cmd)}\n{r.stdout}")
        return r.stdout

    def test_smoke_all_configs(self) -> None:
        cfg_dir = REPO_ROOT / "configs" / "smoke"
        self.assertTrue(cfg_dir.is_dir(), f"缺少 smoke 配置目录：{cfg_dir}")
        cfg_paths = sorted(cfg_dir.glob("*.yaml"), key=lambda p: p.name)
        self.assertGreaterEqual(len(cfg_paths), 3, "smoke 配置数量不足（多层 + 单层 dense + 单层 sparse）")

        for cfg_path in cfg_paths:
            cfg = yaml.safe_load(cfg_path.read_text(encoding="utf-8"))
            name = cfg["exp"]["name"]
            out = self._run([sys.executable, str(REPO_ROOT / "scripts" / "run_layered_crf.py"), "--config", str(cfg_path)])
            self.assertIn(f"[OK] {name}:", out)

    def test_smoke_module(self) -> None:
        out = self._run([sys.executable, "-m", "layered_crf.smoke", "--h", "8", "--w", "10"])
        self.assertIn("[OK] layered:", out)
        self.assertIn("[OK] single:", out)


class RunFunctionTest(unittest.TestCase):
    @staticmethod
    def _script():
        sys.path.insert(0, str(REPO_ROOT / "scripts"))
        try:
            import run_layered_crf
        finally:
            sys.path.pop(0)
        return run_layered_crf

    @staticmethod
    def _cfg(name: str) -> dict:
        return yaml.safe_load((REPO_ROOT / "configs" / "smoke" / name).read_text(encoding="utf-8"))

    def test_layered_3x3_stats(self) -> None:
        stats = self._script().run(self._cfg("layered_3x3.yaml"))
        self.assertEqual(stats["nodes"], 18)
        self.assertEqual(stats["links"], 9)
        self.assertEqual(stats["edges"], 2 * 12 + 9)
        self.assertEqual(stats["default_edges"], 2 * 12)
        # 竖直线 x=1.5 在每层切到 3 条水平边
        self.assertEqual(stats["group_2_edges"], 6)
        # 两层标签数不同 (2,3)，训练器在联合标签空间 3x3 上输出，按层取块
        self.assertEqual(stats["filled_edges"], 2 * 12)
        # 中心站点：4 条网格边 + 1 条链接
        self.assertEqual(stats["max_degree"], 5)
        self.assertEqual(stats["components"], 1)

    def test_config_errors_are_configuration_errors(self) -> None:
        from layered_crf import ConfigurationError

        script = self._script()
        cfg = self._cfg("layered_3x3.yaml")
        del cfg["data"]
        with self.assertRaises(ConfigurationError):
            script.run(cfg)

        cfg = self._cfg("layered_3x3.yaml")
        cfg["data"]["size"] = [3]
        with self.assertRaises(ConfigurationError):
            script.run(cfg)

        cfg = self._cfg("layered_3x3.yaml")
        cfg["groups"] = [{"group": 2, "a": 1.0, "b": 0.0}]
        with self.assertRaises(ConfigurationError):
            script.run(cfg)


if __name__ == "__main__":
    unittest.main()
