"""Unit tests for app.services.normalize: export item normalization and stored array decoding."""

import json
import unittest
from types import SimpleNamespace

from app.services.normalize import (
    decode_json_array,
    normalize_item,
    normalize_severity,
    parse_flag,
    parse_score,
    record_from_row,
)


class TestDecodeJsonArray(unittest.TestCase):
    """Null, malformed or non-array values decode to an empty list, never an error."""

    def test_valid_array(self) -> None:
        self.assertEqual(decode_json_array('["CWE-79", "CWE-89"]'), ["CWE-79", "CWE-89"])

    def test_duplicates_removed_in_order(self) -> None:
        self.assertEqual(decode_json_array('["b", "a", "b"]'), ["b", "a"])

    def test_bad_values_yield_empty(self) -> None:
        for stored in (None, "", "not json", "{\"a\": 1}", "\"string\"", "42", "[1, 2"):
            with self.subTest(stored=stored):
                self.assertEqual(decode_json_array(stored), [])


class TestNormalizeSeverity(unittest.TestCase):
    def test_known_levels_upper_cased(self) -> None:
        self.assertEqual(normalize_severity("critical"), "CRITICAL")
        self.assertEqual(normalize_severity(" Low "), "LOW")

    def test_aliases(self) -> None:
        self.assertEqual(normalize_severity("moderate"), "MEDIUM")

    def test_unrecognized_is_unknown(self) -> None:
        for value in (None, "", "severe", 3):
            with self.subTest(value=value):
                self.assertEqual(normalize_severity(value), "UNKNOWN")


class TestScoresAndFlags(unittest.TestCase):
    def test_cvss_in_range(self) -> None:
        self.assertEqual(parse_score("9.8", 10.0), 9.8)
        self.assertEqual(parse_score(0, 10.0), 0.0)

    def test_out_of_range_or_garbage_is_absent(self) -> None:
        for value in (10.5, -1, "n/a", None, True, float("nan")):
            with self.subTest(value=value):
                self.assertIsNone(parse_score(value, 10.0))

    def test_flag_strings(self) -> None:
        self.assertTrue(parse_flag("true"))
        self.assertTrue(parse_flag(1))
        self.assertFalse(parse_flag("false"))
        self.assertFalse(parse_flag("0"))
        self.assertFalse(parse_flag(None))


class TestNormalizeItem(unittest.TestCase):
    def test_synonym_precedence(self) -> None:
        item = {
            "id": "vuln-123",
            "cve_id": "CVE-2023-0002",
            "cveId": "CVE-2023-0001",
            "package": "lodash",
            "version": "4.17.20",
            "fixed_version": "4.17.21",
            "Severity": "high",
            "cvss_score": "7.4",
            "published_date": "2023-02-01",
            "status": "invalid-norisk",
        }
        row = normalize_item(item, 0)
        self.assertEqual(row["cve_id"], "CVE-2023-0001")
        self.assertEqual(row["package_name"], "lodash")
        self.assertEqual(row["current_version"], "4.17.20")
        self.assertEqual(row["fixed_version"], "4.17.21")
        self.assertEqual(row["severity"], "HIGH")
        self.assertEqual(row["cvss_score"], 7.4)
        self.assertEqual(row["published_date"], "2023-02-01")
        self.assertEqual(row["kai_status"], "invalid-norisk")

    def test_blank_values_fall_through_to_next_synonym(self) -> None:
        row = normalize_item({"cveId": "  ", "CVE_ID": "CVE-2023-0003"}, 0)
        self.assertEqual(row["cve_id"], "CVE-2023-0003")

    def test_defaults(self) -> None:
        row = normalize_item({}, 7)
        self.assertEqual(row["cve_id"], "UNKNOWN-7")
        self.assertEqual(row["package_name"], "Unknown")
        self.assertEqual(row["current_version"], "0.0.0")
        self.assertEqual(row["severity"], "UNKNOWN")
        self.assertEqual(row["description"], "No description available")
        self.assertIsNone(row["cvss_score"])
        self.assertIsNone(row["epss_score"])
        self.assertFalse(row["exploit_available"])
        self.assertFalse(row["patch_available"])
        self.assertEqual(json.loads(row["risk_factors"]), [])

    def test_patch_available_from_fixed_version(self) -> None:
        self.assertTrue(normalize_item({"fixedVersion": "2.0.1"}, 0)["patch_available"])
        self.assertTrue(normalize_item({"patchAvailable": True}, 0)["patch_available"])

    def test_array_fields_encoded(self) -> None:
        row = normalize_item(
            {
                "riskFactors": {"Has fix": {}, "Critical severity": {}},
                "cwe": "CWE-79",
                "references": ["https://nvd.nist.gov/a", "https://nvd.nist.gov/a"],
            },
            0,
        )
        self.assertEqual(json.loads(row["risk_factors"]), ["Has fix", "Critical severity"])
        self.assertEqual(json.loads(row["cwe"]), ["CWE-79"])
        self.assertEqual(json.loads(row["reference_links"]), ["https://nvd.nist.gov/a"])

    def test_epss_range(self) -> None:
        self.assertEqual(normalize_item({"epssScore": "0.42"}, 0)["epss_score"], 0.42)
        self.assertIsNone(normalize_item({"epssScore": 4.2}, 0)["epss_score"])

    def test_raw_data_preserved(self) -> None:
        item = {"cveId": "CVE-2023-0001", "imageName": "api"}
        self.assertEqual(json.loads(normalize_item(item, 0)["raw_data"]), item)

    def test_non_object_rejected(self) -> None:
        with self.assertRaises(TypeError):
            normalize_item(["not", "a", "dict"], 3)  # type: ignore[arg-type]


class TestRecordFromRow(unittest.TestCase):
    def _stored(self, **kwargs: object) -> SimpleNamespace:
        defaults = {
            "id": 1,
            "cve_id": "CVE-2024-0001",
            "package_name": "pkgA",
            "current_version": "1.0.0",
            "fixed_version": None,
            "severity": "HIGH",
            "cvss_score": 7.5,
            "epss_score": None,
            "description": "Test",
            "risk_factors": '["Has fix"]',
            "cwe": None,
            "reference_links": "[]",
            "published_date": "2024-01-15",
            "last_modified_date": None,
            "kai_status": None,
            "exploit_available": 1,
            "patch_available": 0,
        }
        defaults.update(kwargs)
        return SimpleNamespace(**defaults)

    def test_decodes_arrays_and_flags(self) -> None:
        record = record_from_row(self._stored())
        self.assertEqual(record.risk_factors, ["Has fix"])
        self.assertEqual(record.cwe, [])
        self.assertTrue(record.exploit_available)
        self.assertFalse(record.patch_available)

    def test_malformed_risk_factors_decode_to_empty(self) -> None:
        record = record_from_row(self._stored(risk_factors="[oops"))
        self.assertEqual(record.risk_factors, [])

    def test_unrecognized_stored_severity_reported_as_unknown(self) -> None:
        self.assertEqual(record_from_row(self._stored(severity="moderate")).severity, "UNKNOWN")

    def test_camel_case_wire_names(self) -> None:
        dumped = record_from_row(self._stored()).model_dump(by_alias=True)
        for key in ("cveId", "packageName", "riskFactors", "referenceLinks", "kaiStatus", "epssScore"):
            self.assertIn(key, dumped)


if __name__ == "__main__":
    unittest.main()
