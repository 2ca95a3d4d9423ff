import os
import unittest

from suprimentos import create_app
from suprimentos.config import Config
from suprimentos.db import close_db
from suprimentos.db_migrations import to_sqlalchemy_url
from tests.helpers.temp_db import TempDbSandbox, table_exists


SCHEMA_TABLES = ("local_cache", "quotation_documents", "order_documents")


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.sandbox = TempDbSandbox(prefix="padoca_migrations")
        self.db_path = self.sandbox.db_path
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env
        self.sandbox.cleanup()

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        config = self.sandbox.make_config(Config, TESTING=testing, DB_AUTO_INIT=db_auto_init)
        return create_app(config)

    def _assert_schema(self, present: bool) -> None:
        for table in SCHEMA_TABLES:
            self.assertEqual(table_exists(self.db_path, table), present, msg=table)

    def test_schema_not_created_without_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()

        self._assert_schema(False)
        self.assertFalse(app.extensions["sourcing_service"].listener.is_active)

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        self._assert_schema(True)
        self.assertTrue(app.extensions["sourcing_service"].listener.is_active)

    def test_auto_init_is_ignored_outside_development(self) -> None:
        os.environ["FLASK_ENV"] = "staging"
        self._build_app(testing=False, db_auto_init=True)
        self._assert_schema(False)

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self._assert_schema(True)

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self._assert_schema(False)

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self._assert_schema(True)

    def test_deferred_listener_starts_after_upgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        service = app.extensions["sourcing_service"]
        self.assertFalse(service.listener.is_active)

        result = app.test_cli_runner().invoke(args=["db", "upgrade"])
        self.assertEqual(result.exit_code, 0, msg=result.output)

        response = app.test_client().get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(service.listener.is_active)
        self.assertEqual(response.get_json()["status"], "ok")

    def test_db_init_creates_local_schema(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        result = app.test_cli_runner().invoke(args=["db", "init"])

        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertIn("Schema local criado.", result.output)
        self._assert_schema(True)


class SqlalchemyUrlTest(unittest.TestCase):
    def test_sqlite_paths_become_absolute_urls(self) -> None:
        self.assertTrue(to_sqlalchemy_url("database/padoca.db").startswith("sqlite:///"))

    def test_postgres_scheme_is_normalized(self) -> None:
        self.assertEqual(to_sqlalchemy_url("postgres://u:p@db/padoca"), "postgresql://u:p@db/padoca")
        self.assertEqual(to_sqlalchemy_url("postgresql://u:p@db/padoca"), "postgresql://u:p@db/padoca")

    def test_blank_path_fails(self) -> None:
        with self.assertRaises(RuntimeError):
            to_sqlalchemy_url("  ")


if __name__ == "__main__":
    unittest.main()
