"""Tests for the ingest job: flattening, guards, batch loading and the CLI."""

import json
import os
import tempfile
import unittest
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.core.config import Settings
from app.core.database import create_session_factory, create_store_engine
from app.ingest import main
from app.models import Vulnerability
from app.services.ingest import (
    IngestError,
    flatten_export,
    load_items,
    read_export,
    run_ingest,
)
from store_fixtures import TempStore


def _export() -> dict:
    """Nested export with two images across two repos."""
    return {
        "groups": {
            "g1": {
                "name": "platform",
                "repos": {
                    "r1": {
                        "name": "api",
                        "images": {
                            "i1": {
                                "name": "api-server",
                                "version": "1.2.3",
                                "baseImage": "alpine:3.18",
                                "vulnerabilities": [
                                    {
                                        "cveId": "CVE-2023-0001",
                                        "packageName": "openssl",
                                        "severity": "critical",
                                        "cvssScore": 9.8,
                                        "publishedDate": "2023-01-10",
                                        "riskFactors": ["Has fix"],
                                    },
                                    {
                                        "cveId": "CVE-2023-0002",
                                        "packageName": "zlib",
                                        "severity": "weird",
                                        "kaiStatus": "invalid - norisk",
                                    },
                                ],
                            }
                        },
                    },
                    "r2": {
                        "name": "web",
                        "images": {
                            "i2": {
                                "name": "web-ui",
                                "version": "0.9.0",
                                "vulnerabilities": [
                                    {
                                        "cveId": "CVE-2023-0001",
                                        "packageName": "openssl",
                                        "severity": "HIGH",
                                        "fixedVersion": "3.0.8",
                                    }
                                ],
                            }
                        },
                    },
                },
            }
        }
    }


class TestFlattenExport(unittest.TestCase):
    def test_nested_groups_repos_images(self) -> None:
        items = flatten_export(_export())
        self.assertEqual(len(items), 3)
        first = items[0]
        self.assertEqual(first["groupName"], "platform")
        self.assertEqual(first["repoName"], "api")
        self.assertEqual(first["imageName"], "api-server")
        self.assertEqual(first["imageVersion"], "1.2.3")
        self.assertEqual(first["baseImage"], "alpine:3.18")
        self.assertEqual(first["cveId"], "CVE-2023-0001")
        self.assertEqual(items[2]["repoName"], "web")

    def test_top_level_list(self) -> None:
        self.assertEqual(flatten_export([{"cveId": "A"}, "junk", {"cveId": "B"}]), [{"cveId": "A"}, {"cveId": "B"}])

    def test_vulnerabilities_key(self) -> None:
        self.assertEqual(flatten_export({"vulnerabilities": [{"cveId": "A"}]}), [{"cveId": "A"}])

    def test_unrecognized_shape_is_empty(self) -> None:
        self.assertEqual(flatten_export({"something": 1}), [])
        self.assertEqual(flatten_export("text"), [])


class TestReadExport(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmpdir.name, "export.json")

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_missing_file(self) -> None:
        with self.assertRaises(IngestError) as ctx:
            read_export(self.path)
        self.assertIn("not found", ctx.exception.message)

    def test_git_lfs_pointer(self) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("version https://git-lfs.github.com/spec/v1\noid sha256:abc\nsize 123\n")
        with self.assertRaises(IngestError) as ctx:
            read_export(self.path)
        self.assertIn("Git LFS", ctx.exception.message)

    def test_invalid_json(self) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")
        with self.assertRaises(IngestError):
            read_export(self.path)


class TestLoadItems(unittest.TestCase):
    def setUp(self) -> None:
        self.store = TempStore()

    def tearDown(self) -> None:
        self.store.close()

    def test_bad_items_counted_not_raised(self) -> None:
        items = [{"cveId": f"CVE-2024-{i:04d}"} for i in range(5)]
        items.insert(2, "not an object")  # type: ignore[arg-type]
        result = load_items(self.store.session, items, batch_size=2)
        self.assertEqual(result.processed, 5)
        self.assertEqual(result.errors, 1)
        self.assertEqual(result.total, 6)
        self.assertEqual(self.store.session.query(Vulnerability).count(), 5)

    def test_failed_batch_counted_as_errors(self) -> None:
        session = self.store.session
        real_execute = session.execute
        calls = {"insert": 0}

        def execute(statement, *args, **kwargs):
            if getattr(statement, "is_insert", False):
                calls["insert"] += 1
                if calls["insert"] == 2:
                    raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return real_execute(statement, *args, **kwargs)

        items = [{"cveId": f"CVE-2024-{i:04d}"} for i in range(5)]
        with patch.object(session, "execute", side_effect=execute):
            result = load_items(session, items, batch_size=2)

        self.assertEqual(result.processed, 3)
        self.assertEqual(result.errors, 2)
        self.assertEqual(result.total, 5)
        stored = [r.cve_id for r in session.query(Vulnerability).order_by(Vulnerability.id)]
        self.assertEqual(stored, ["CVE-2024-0000", "CVE-2024-0001", "CVE-2024-0004"])


class TestRunIngest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.source = os.path.join(self._tmpdir.name, "export.json")
        self.database = os.path.join(self._tmpdir.name, "data", "vulnerabilities.db")
        self.settings = Settings(DATABASE_PATH=self.database, SOURCE_JSON_PATH=self.source)
        with open(self.source, "w", encoding="utf-8") as f:
            json.dump(_export(), f)

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def _stored(self) -> list[Vulnerability]:
        engine = create_store_engine(self.database)
        session = create_session_factory(engine)()
        try:
            return session.query(Vulnerability).order_by(Vulnerability.id).all()
        finally:
            session.close()
            engine.dispose()

    def test_builds_table(self) -> None:
        result = run_ingest(self.source, self.database, self.settings)
        self.assertEqual((result.processed, result.errors, result.total), (3, 0, 3))

        rows = self._stored()
        self.assertEqual([r.cve_id for r in rows], ["CVE-2023-0001", "CVE-2023-0002", "CVE-2023-0001"])
        self.assertEqual([r.severity for r in rows], ["CRITICAL", "UNKNOWN", "HIGH"])
        self.assertEqual(rows[0].cvss_score, 9.8)
        self.assertEqual(json.loads(rows[0].risk_factors), ["Has fix"])
        self.assertEqual(rows[1].kai_status, "invalid - norisk")
        self.assertTrue(rows[2].patch_available)
        self.assertEqual(json.loads(rows[2].raw_data)["imageName"], "web-ui")

    def test_rerun_replaces_table(self) -> None:
        run_ingest(self.source, self.database, self.settings)
        run_ingest(self.source, self.database, self.settings)
        self.assertEqual(len(self._stored()), 3)

    def test_empty_export_raises(self) -> None:
        with open(self.source, "w", encoding="utf-8") as f:
            json.dump({"groups": {}}, f)
        with self.assertRaises(IngestError):
            run_ingest(self.source, self.database, self.settings)


class TestCli(unittest.TestCase):
    def test_missing_source_exits_1(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            code = main([
                os.path.join(tmpdir, "missing.json"),
                "--database",
                os.path.join(tmpdir, "out.db"),
            ])
        self.assertEqual(code, 1)

    def test_success_exits_0(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            source = os.path.join(tmpdir, "export.json")
            with open(source, "w", encoding="utf-8") as f:
                json.dump(_export(), f)
            code = main([source, "--database", os.path.join(tmpdir, "out.db")])
        self.assertEqual(code, 0)


if __name__ == "__main__":
    unittest.main()
