import unittest
import sys
import os
import tempfile
import shutil
import json
import numpy as np
import yaml
from io import StringIO
from pathlib import Path
from unittest.mock import patch

# Ensure project root on path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import main  # noqa: E402
from logger_config import configure_logging  # noqa: E402


class TestCLI(unittest.TestCase):
    """End-to-end tests for the wordmath command line.

    The embedding provider is switched off so every vector comes from the
    synthetic tier and the tests run offline.
    """

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp_dir, ignore_errors=True)
        self.config_path = self._write_config()

        env = patch.dict(os.environ, {}, clear=False)
        env.start()
        self.addCleanup(env.stop)
        for key in list(os.environ):
            if key.startswith("CONFIG_") or key == "HUGGINGFACE_API_KEY":
                del os.environ[key]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _write_config(self, **embedding):
        config = {
            "embedding": {"provider": "none", "dimension": 8, **embedding},
            "store": {"backend": "memory"},
            "logging": {"level": "ERROR"},
        }
        path = os.path.join(self.tmp_dir, "config.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f)
        return path

    def _run(self, *argv):
        """Run the CLI and return (exit_code, stdout, stderr)."""
        with patch("sys.stdout", new_callable=StringIO) as out, \
                patch("sys.stderr", new_callable=StringIO) as err:
            code = main.main(["--config", self.config_path, *argv])
        return code, out.getvalue(), err.getvalue()

    # ------------------------------------------------------------------
    # compute
    # ------------------------------------------------------------------
    def test_compute_json_output(self):
        code, out, err = self._run("compute", "King", "-", "man", "--top-k", "2")
        self.assertEqual(code, 0)

        data = json.loads(out)
        self.assertEqual(data["operation"], "king - man")
        self.assertEqual(len(data["results"]), 2)
        self.assertNotIn("king", [r["word"] for r in data["results"]])
        self.assertEqual(len(data["combined_vector_preview"]), 5)
        self.assertTrue(data["degraded"])
        self.assertIn("Warning", err)

    def test_compute_yaml_output(self):
        code, out, _ = self._run("compute", "kadın", "+", "üzgün", "--format", "yaml")
        self.assertEqual(code, 0)

        data = yaml.safe_load(out)
        self.assertEqual(data["operation"], "kadın + üzgün")
        self.assertEqual(data["word1_language"], "tr")
        self.assertIsInstance(data["results"], list)

    def test_compute_text_output(self):
        code, out, _ = self._run("compute", "apple", "+", "red", "-f", "text")
        self.assertEqual(code, 0)
        self.assertIn("apple + red", out)
        self.assertIn("Vector preview:", out)
        self.assertIn("1. ", out)

    def test_unknown_operation_is_invalid_input(self):
        code, out, err = self._run("compute", "king", "*", "man")
        self.assertEqual(code, main.EXIT_INVALID_INPUT)
        self.assertEqual(out, "")
        self.assertIn("Error:", err)

    def test_empty_word_is_invalid_input(self):
        code, _, _ = self._run("compute", "   ", "+", "man")
        self.assertEqual(code, main.EXIT_INVALID_INPUT)

    def test_no_embedding_available_exits_with_error(self):
        self.config_path = self._write_config(synthetic_fallback=False)
        code, out, err = self._run("compute", "king", "-", "man")
        self.assertEqual(code, main.EXIT_ERROR)
        self.assertEqual(out, "")
        self.assertIn("Error:", err)

    def test_environment_override_disables_synthetic(self):
        with patch.dict(os.environ, {"CONFIG_EMBEDDING_SYNTHETIC_FALLBACK": "false"}):
            code, _, _ = self._run("compute", "king", "-", "man")
        self.assertEqual(code, main.EXIT_ERROR)

    # ------------------------------------------------------------------
    # Other sub-commands
    # ------------------------------------------------------------------
    def test_embed(self):
        code, out, err = self._run("embed", "apple", "Elma")
        self.assertEqual(code, 0)

        data = json.loads(out)
        self.assertEqual(set(data["embeddings"]), {"apple", "elma"})
        self.assertEqual(data["embeddings"]["apple"]["dimension"], 8)
        self.assertEqual(data["embeddings"]["apple"]["source"], "synthetic")
        self.assertEqual(sorted(data["synthetic_words"]), ["apple", "elma"])
        self.assertIn("low-quality", err)

    def test_embed_too_many_words(self):
        code, _, _ = self._run("embed", *[f"w{i}" for i in range(11)])
        self.assertEqual(code, main.EXIT_INVALID_INPUT)

    def test_languages(self):
        code, out, _ = self._run("languages")
        self.assertEqual(code, 0)
        codes = [entry["code"] for entry in json.loads(out)["languages"]]
        self.assertEqual(codes, ["tr", "ar", "zh", "ru", "en"])

        code, out, _ = self._run("languages", "-f", "text")
        self.assertTrue(out.startswith("1. tr"))

    def test_health(self):
        code, out, _ = self._run("health")
        self.assertEqual(code, 0)

        report = json.loads(out)
        self.assertEqual(report["status"], "ok")
        self.assertEqual(report["provider"], "none")
        self.assertFalse(report["provider_configured"])
        self.assertIn("timestamp", report)

        code, out, _ = self._run("health", "--format", "text")
        self.assertIn("results will be synthetic", out)

    def test_cache_stats(self):
        code, out, _ = self._run("cache-stats", "-f", "text")
        self.assertEqual(code, 0)
        self.assertIn("EMBEDDING CACHE STATISTICS", out)
        self.assertIn("No cache lookups yet.", out)
        self.assertIn("Durable store: 0 vectors (memory backend)", out)

    def test_cache_stats_reports_disk_store_from_earlier_runs(self):
        from vector_store import DiskVectorStore

        store_dir = os.path.join(self.tmp_dir, "vectors")
        DiskVectorStore(store_dir).store("apple", np.ones(8))
        with open(self.config_path, "r", encoding="utf-8") as f:
            config = json.load(f)
        config["store"] = {"backend": "disk", "directory": store_dir}
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump(config, f)

        code, out, _ = self._run("cache-stats")
        self.assertEqual(code, 0)
        stats = json.loads(out)
        self.assertEqual(stats["size"], 0)
        self.assertEqual(stats["store_backend"], "disk")
        self.assertEqual(stats["store_size"], 1)

        _, out, _ = self._run("cache-stats", "-f", "text")
        self.assertIn("Durable store: 1 vectors (disk backend)", out)

    def test_missing_subcommand(self):
        with patch("sys.stderr", new_callable=StringIO):
            with self.assertRaises(SystemExit) as ctx:
                main.main(["--config", self.config_path])
        self.assertEqual(ctx.exception.code, 2)

    def test_log_dir_creates_category_files(self):
        log_dir = os.path.join(self.tmp_dir, "logs")
        self.addCleanup(configure_logging, None, "WARNING")

        code, _, _ = self._run("--log-dir", log_dir, "languages")
        self.assertEqual(code, 0)
        for category in ("embeddings", "budget", "ranking", "api", "system"):
            self.assertTrue(any(Path(log_dir, category).glob(f"{category}_*")), category)


class TestCacheStatsFormatting(unittest.TestCase):

    def setUp(self):
        self.stats = {"size": 12, "hits": 9, "misses": 1, "hit_rate": 0.9}

    def test_text(self):
        text = main.format_cache_stats(self.stats)
        self.assertIn("Entries: 12", text)
        self.assertIn("Hit rate: 90.00%", text)

    def test_markdown(self):
        text = main.format_cache_stats(self.stats, format="markdown")
        self.assertTrue(text.startswith("# Embedding Cache Statistics"))
        self.assertIn("**90.00% hit rate**", text)

    def test_json_and_yaml(self):
        self.assertEqual(json.loads(main.format_cache_stats(self.stats, format="json")), self.stats)
        self.assertEqual(yaml.safe_load(main.format_cache_stats(self.stats, format="yaml")), self.stats)

    def test_unknown_format(self):
        with self.assertRaises(ValueError):
            main.format_cache_stats(self.stats, format="xml")

    def test_interpretation(self):
        self.assertEqual(main.interpret_cache_stats(None), "No cache lookups yet.")
        self.assertIn("most lookups", main.interpret_cache_stats(self.stats))
        self.assertIn("moderate", main.interpret_cache_stats({"hits": 6, "misses": 4, "hit_rate": 0.6}))
        self.assertTrue(main.interpret_cache_stats({"hits": 1, "misses": 9, "hit_rate": 0.1}).startswith("Warning"))


if __name__ == "__main__":
    unittest.main()
