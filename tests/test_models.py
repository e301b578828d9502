"""Unit tests for model and report format selection"""

import unittest

from vmaf_analyzer.models import (
    ALIASES,
    MODELS,
    OutputFormat,
    estimate_analysis_time,
    resolve_model,
)


class TestModels(unittest.TestCase):
    def test_aliases_resolve_to_registered_models(self):
        for alias, identifier in ALIASES.items():
            self.assertEqual(resolve_model(alias), identifier)
            self.assertIn(identifier, MODELS)

    def test_alias_lookup_ignores_case_and_whitespace(self):
        self.assertEqual(resolve_model("  Quality-4K "), "vmaf_4k_v0.6.1")

    def test_unknown_model_passes_through(self):
        self.assertEqual(resolve_model("vmaf_b_v0.6.3"), "vmaf_b_v0.6.3")

    def test_empty_model_rejected(self):
        with self.assertRaises(ValueError):
            resolve_model("  ")

    def test_estimate_scales_with_resolution(self):
        self.assertAlmostEqual(estimate_analysis_time(100, "1920x1080"), 10.0)
        self.assertAlmostEqual(estimate_analysis_time(100, "3840x2160"), 40.0)
        self.assertAlmostEqual(estimate_analysis_time(100, "8K"), 80.0)
        self.assertAlmostEqual(estimate_analysis_time(100, "1280x720"), 5.0)


class TestOutputFormat(unittest.TestCase):
    def test_parse(self):
        self.assertIs(OutputFormat.parse("JSON"), OutputFormat.JSON)
        self.assertIs(OutputFormat.parse(OutputFormat.CSV), OutputFormat.CSV)

    def test_parse_rejects_unknown(self):
        with self.assertRaisesRegex(ValueError, "json, xml, csv"):
            OutputFormat.parse("yaml")

    def test_flag_and_extension(self):
        self.assertEqual(OutputFormat.XML.flag, "--xml")
        self.assertEqual(OutputFormat.CSV.extension, "csv")


if __name__ == "__main__":
    unittest.main()
