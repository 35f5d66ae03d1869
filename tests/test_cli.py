import unittest
from unittest.mock import patch
import sys
import os
import io
import json
import tempfile

from PIL import Image

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from snapquiz import cli


class TestCli(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.image = os.path.join(self.tmp.name, "homework.png")
        Image.new("RGB", (120, 90), color="white").save(self.image, format="PNG")
        env = patch.dict(os.environ, {"SNAPQUIZ_IMAGE_BACKEND": "pillow"}, clear=True)
        env.start()
        self.addCleanup(env.stop)

    def test_mock_run_writes_json(self):
        out = os.path.join(self.tmp.name, "quiz.json")
        code = cli.main([self.image, "--mock", "--homework-id", "hw7", "--out", out])
        self.assertEqual(code, 0)
        with open(out, encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data["homeworkId"], "hw7")
        self.assertEqual(len(data["questions"]), 10)

    def test_text_run(self):
        out = os.path.join(self.tmp.name, "quiz.json")
        code = cli.main(["--text", "Solve for x: 2x + 4 = 10", "--mock", "--homework-id", "hw8", "--out", out])
        self.assertEqual(code, 0)
        with open(out, encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data["homeworkId"], "hw8")
        self.assertEqual(data["title"], "Sample Quiz")

    def test_image_or_text_required(self):
        with self.assertRaises(SystemExit):
            cli.main(["--mock"])
        with self.assertRaises(SystemExit):
            cli.main([self.image, "--text", "both", "--mock"])

    def test_answer_key(self):
        with patch("sys.stdout", new_callable=io.StringIO) as stdout:
            code = cli.main([self.image, "--mock", "--answer-key"])
        self.assertEqual(code, 0)
        printed = stdout.getvalue()
        self.assertIn("1. A) Option A1", printed)
        self.assertIn("4. 6", printed)
        self.assertNotIn('"questions"', printed)

    def test_missing_image(self):
        self.assertEqual(cli.main([os.path.join(self.tmp.name, "nope.png"), "--mock"]), 1)

    def test_missing_api_key_fails(self):
        self.assertEqual(cli.main([self.image, "--homework-id", "hw7"]), 1)

    def test_bad_config(self):
        with patch.dict(os.environ, {"SNAPQUIZ_MAX_TOKENS": "many"}):
            self.assertEqual(cli.main([self.image, "--mock"]), 2)


if __name__ == "__main__":
    unittest.main()
