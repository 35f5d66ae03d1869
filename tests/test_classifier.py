import unittest
import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from snapquiz.classifier import ContentClassifier
from snapquiz.models import ClassificationResult


class TestContentClassifier(unittest.TestCase):
    def setUp(self):
        self.classifier = ContentClassifier(threshold=0.4)

    def test_maths_worksheet(self):
        result = self.classifier.classify("Solve the equation: 2x + 5 = 15. Calculate the area of the triangle.")
        self.assertEqual(result.topic, "maths")
        self.assertGreater(result.confidence, 0.4)
        self.assertLessEqual(result.confidence, 0.95)

    def test_solve_for_x(self):
        result = self.classifier.classify("Solve for x: 2x + 4 = 10")
        self.assertEqual(result.topic, "maths")
        self.assertGreater(result.confidence, 0.4)

    def test_empty_text_is_generic(self):
        result = self.classifier.classify("")
        self.assertEqual(result, ClassificationResult.FALLBACK)
        self.assertEqual(result.topic, "generic")
        self.assertEqual(result.confidence, 0.5)
        self.assertTrue(result.is_fallback)
        self.assertIsNone(self.classifier.classify(None).subtopic)

    def test_history_subtopic(self):
        result = self.classifier.classify(
            "When did World War II end? Which treaty was signed after the war? Name the president and the prime minister."
        )
        self.assertEqual(result.topic, "history")
        self.assertEqual(result.subtopic, "world_war")

    def test_science_subtopic(self):
        result = self.classifier.classify("Label the parts of the cell. What does the mitochondria do in an organism?")
        self.assertEqual(result.topic, "science")
        self.assertEqual(result.subtopic, "biology")

    def test_keywords_match_whole_words(self):
        scores = self.classifier.scores("concellation")
        self.assertEqual(scores["science"], 0.0)

    def test_equation_boosts_maths(self):
        plain = self.classifier.scores("solve")["maths"]
        boosted = self.classifier.scores("solve 3 + 4 = 7")["maths"]
        self.assertGreater(boosted, plain)

    def test_ties_follow_topic_order(self):
        result = self.classifier.classify("noun cell")
        self.assertEqual(result.topic, "english")
        self.assertEqual(result.confidence, 0.5)
        self.assertEqual(self.classifier.classify("algebra noun").topic, "maths")

    def test_single_topic_confidence_is_capped(self):
        result = self.classifier.classify("solve")
        self.assertEqual(result.topic, "maths")
        self.assertEqual(result.confidence, 0.95)
        self.assertFalse(result.is_fallback)

    def test_mixed_text_below_threshold(self):
        result = ContentClassifier(threshold=0.9).classify("noun verb cell atom war king")
        self.assertEqual(result.topic, "generic")

    def test_invalid_threshold(self):
        with self.assertRaises(ValueError):
            ContentClassifier(threshold=1.5)


if __name__ == "__main__":
    unittest.main()
