import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from smarteval.core.audit import AuditEvent, AuditLogger
from smarteval.core.config import AppConfig, load_app_config, merge_config
from smarteval.core.errors import DocumentNotFound, RemoteStoreError, friendly_auth_error
from smarteval.core.validation import ValidationFailure, ValidationResult


class ConfigParsingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name).resolve()

    def _write_yaml(self, data: str) -> Path:
        path = self.root / "evaluator.yaml"
        path.write_text(data, encoding="utf-8")
        return path

    def test_load_app_config_anchors_relative_paths_at_config_dir(self) -> None:
        path = self._write_yaml(
            """
            cache:
              prefix: test_
              ttl_seconds: 60
              sqlite_path: state/cache.sqlite
            store:
              backend: sqlite
              sqlite_path: state/store.sqlite
            """
        )
        config = load_app_config(path)
        self.assertIsInstance(config, AppConfig)
        self.assertEqual(config.cache.prefix, "test_")
        self.assertEqual(config.cache.ttl_ms, 60_000)
        self.assertEqual(config.cache.sqlite_path, self.root / "state" / "cache.sqlite")
        self.assertEqual(config.store.sqlite_path, self.root / "state" / "store.sqlite")
        self.assertEqual(config.audit.path, self.root / "outputs" / "logs" / "audit.jsonl")

    def test_missing_file_yields_defaults_under_base_dir(self) -> None:
        config = load_app_config(self.root / "absent.yaml", base_dir=self.root)
        self.assertEqual(config.cache.ttl_seconds, 300)
        self.assertEqual(config.cache.max_entries, 50)
        self.assertEqual(config.cache.evict_count, 10)
        self.assertEqual(config.store.backend, "sqlite")
        self.assertEqual(config.store.sqlite_path, self.root / "outputs" / "store.sqlite")

    def test_http_backend_requires_api_base(self) -> None:
        path = self._write_yaml(
            """
            store:
              backend: http
            """
        )
        with self.assertRaises(ValueError):
            load_app_config(path)

    def test_unknown_sections_are_rejected(self) -> None:
        path = self._write_yaml("mailer:\n  host: localhost\n")
        with self.assertRaises(ValueError):
            load_app_config(path)

    def test_non_mapping_root_is_rejected(self) -> None:
        path = self._write_yaml("- just\n- a list\n")
        with self.assertRaises(ValueError):
            load_app_config(path)

    def test_merge_config_applies_overrides_without_mutating_base(self) -> None:
        base = load_app_config(None, base_dir=self.root)
        merged = merge_config(base, {"store": {"sqlite_path": str(self.root / "other.sqlite")}})
        self.assertEqual(merged.store.sqlite_path, self.root / "other.sqlite")
        self.assertEqual(base.store.sqlite_path, self.root / "outputs" / "store.sqlite")
        with self.assertRaises(ValueError):
            merge_config(base, {"cache": {"ttl_seconds": 0}})

    def test_store_api_key_comes_from_environment(self) -> None:
        config = AppConfig.model_validate(
            {"store": {"backend": "http", "api_base": "http://store.local", "api_key_env": "EVAL_TEST_KEY"}}
        )
        with mock.patch.dict(os.environ, {"EVAL_TEST_KEY": "s3cret"}):
            self.assertEqual(config.store.api_key, "s3cret")
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertIsNone(config.store.api_key)


class ValidationResultTests(unittest.TestCase):
    def test_merge_combines_errors_and_warnings(self) -> None:
        first = ValidationResult.from_errors(["a"], data="payload")
        second = ValidationResult(warnings=["w"])
        merged = first.merge(second).merge(ValidationResult.from_errors(["a", "b"]))
        self.assertFalse(merged.valid)
        self.assertEqual(merged.errors, ["a", "b"])
        self.assertEqual(merged.warnings, ["w"])
        self.assertTrue(merged.has_warnings)
        self.assertEqual(merged.data, "payload")

    def test_raise_if_invalid_carries_every_violation(self) -> None:
        ValidationResult().raise_if_invalid("group")
        with self.assertRaises(ValidationFailure) as ctx:
            ValidationResult.from_errors(["x", "y"]).raise_if_invalid("group")
        self.assertEqual(ctx.exception.violations, ["x", "y"])
        self.assertEqual(str(ctx.exception), "group: x; y")


class ErrorTests(unittest.TestCase):
    def test_remote_store_error_user_message(self) -> None:
        exc = RemoteStoreError("Loading students", "connection refused", collection="students")
        self.assertEqual(exc.user_message, "Loading students failed: connection refused")
        self.assertEqual(str(exc), exc.user_message)
        self.assertEqual(exc.collection, "students")

    def test_document_not_found_message(self) -> None:
        self.assertEqual(str(DocumentNotFound("groups", "g1")), "groups/g1 does not exist")

    def test_friendly_auth_error(self) -> None:
        self.assertEqual(friendly_auth_error("auth/wrong-password"), "Incorrect password.")
        self.assertEqual(friendly_auth_error("auth/unknown", "boom", "register"), "Registration failed: boom")
        self.assertEqual(friendly_auth_error(None, action="google"), "Google sign-in failed")


class AuditLoggerTests(unittest.TestCase):
    def test_log_and_read_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            logger = AuditLogger(Path(tmp) / "logs" / "audit.jsonl")
            logger.log({"action": "insert", "collection": "groups", "document_id": "g1", "payload": {"name": "A"}})
            logger.extend([AuditEvent(action="delete", collection="groups", document_id="g1")])

            events = logger.read()
            self.assertEqual([event.action for event in events], ["insert", "delete"])
            self.assertEqual(events[0].payload, {"name": "A"})
            self.assertEqual(events[1].actor, "system")

    def test_batches_share_one_append_and_reads_filter(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            logger = AuditLogger(Path(tmp) / "audit.jsonl")
            written = logger.extend(
                [
                    {"action": "delete", "collection": "students", "document_id": "s1", "actor": "root"},
                    AuditEvent(action="delete", collection="groups", document_id="g1", actor="root"),
                ]
            )
            logger.log({"action": "set", "collection": "settings", "document_id": "pageVisibility"})
            self.assertEqual(logger.extend([]), [])

            self.assertEqual([event.collection for event in written], ["students", "groups"])
            self.assertEqual(len(logger.read()), 3)
            self.assertEqual([event.document_id for event in logger.read(actor="root")], ["s1", "g1"])
            self.assertEqual([event.document_id for event in logger.read(collection="settings")], ["pageVisibility"])
            with self.assertRaises(ValueError):
                logger.log({"action": "batch", "collection": "groups"})


if __name__ == "__main__":
    unittest.main()
