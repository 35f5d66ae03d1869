import unittest
import sys
import os
import json
import tempfile

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from snapquiz.errors import ConfigError
from snapquiz.prompts import (
    FALLBACK_PROMPT,
    PromptBuilder,
    load_prompt_config,
    parse_prompt_config,
)


class TestPromptBuilder(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.config = load_prompt_config()

    def setUp(self):
        self.builder = PromptBuilder(self.config)

    def test_loads_all_topics(self):
        for topic in ("generic", "maths", "english", "science", "history"):
            self.assertIn(topic, self.config.vision)
        self.assertEqual(self.builder.classification_threshold, 0.4)
        self.assertEqual(len(self.config.examples), 7)

    def test_composition_order(self):
        template = self.config.vision["maths"]
        prompt = self.builder.build_vision_prompt("maths", "fractions")

        self.assertTrue(prompt.startswith(template.system + "\n\n"))
        self.assertIn(" about fractions", prompt)
        self.assertNotIn("{subjectHint}", prompt)
        self.assertTrue(prompt.endswith(template.suffix))

        positions = [
            prompt.index(template.instructions[0]),
            prompt.index("Here are some examples of different homework types:"),
            prompt.index("Requirements:\n- "),
            prompt.index(template.format.description),
            prompt.index('"questions": ['),
        ]
        self.assertEqual(positions, sorted(positions))

    def test_no_subject_leaves_no_hint(self):
        prompt = self.builder.build_vision_prompt("generic")
        self.assertIn("from its content.", prompt)
        self.assertNotIn(" about ", prompt.split("\n\n")[1])

    def test_examples_follow_priority_and_limit(self):
        names = [e.name for e in self.builder.select_examples("generic")]
        self.assertEqual(names, ["Spelling List", "Maths Worksheet", "Reading Comprehension"])
        self.assertEqual([e.id for e in self.builder.select_examples("maths")], ["maths-worksheet"])
        self.assertLessEqual(len(self.builder.select_examples("english")), 3)

    def test_examples_section_format(self):
        prompt = self.builder.build_vision_prompt("maths")
        self.assertIn(
            "Example 1: Maths Worksheet\nDescription: ",
            prompt,
        )
        self.assertIn("\nRecommended distribution:\n  - MCQ: 60%\n  - Fill-in-blank: 30%\n  - Short answer: 10%\n", prompt)
        self.assertNotIn("Example 2:", prompt)

    def test_unknown_topic_uses_generic(self):
        self.assertEqual(
            self.builder.build_vision_prompt("geography", "rivers"),
            self.builder.build_vision_prompt("generic", "rivers"),
        )

    def test_examples_can_be_disabled(self):
        prompt = PromptBuilder(self.config, include_examples=False).build_vision_prompt("english")
        self.assertNotIn("Here are some examples", prompt)

    def test_fallback_when_no_templates(self):
        config = parse_prompt_config({"prompts": {"vision": {}}, "settings": {}})
        prompt = PromptBuilder(config).build_vision_prompt("maths", "algebra")
        self.assertEqual(prompt, FALLBACK_PROMPT.replace("{subjectHint}", " about algebra"))

    def test_text_prompt_contains_content(self):
        prompt = self.builder.build_text_prompt("Photosynthesis uses light.", "biology")
        self.assertIn("Photosynthesis uses light.", prompt)
        self.assertIn(" about biology", prompt)
        self.assertTrue(prompt.endswith(self.config.text.suffix))

    def test_distribution_falls_back_to_generic(self):
        self.assertEqual(
            self.builder.question_type_distribution("geography"),
            self.builder.question_type_distribution("generic"),
        )


class TestLoadPromptConfig(unittest.TestCase):
    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_prompt_config("/nonexistent/prompts.json")

    def test_malformed_template(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "prompts.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"prompts": {"vision": {"generic": {"system": "x"}}}}, f)
            with self.assertRaises(ConfigError):
                load_prompt_config(path, os.path.join(tmp, "missing.json"))


if __name__ == "__main__":
    unittest.main()
