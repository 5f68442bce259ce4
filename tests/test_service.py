"""End-to-end tests for the SQLite-backed HTTP service."""

from __future__ import annotations

import re
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from app.config import Settings
from app.database import Database, StorageUnavailable, TransientQueryFailure
from app.service import create_app


class FailingLogDatabase(Database):
    def log_activity(self, *args, **kwargs) -> int:  # type: ignore[override]
        raise TransientQueryFailure("disk full")


class BrokenReadDatabase(Database):
    def get_all_users(self):  # type: ignore[override]
        raise TransientQueryFailure("database disk image is malformed")


class ClosedReadDatabase(Database):
    def get_stats(self):  # type: ignore[override]
        raise StorageUnavailable("Database is not open")


class UserdeskServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        self.db_path = Path(self._tempdir.name) / "userdesk.sqlite3"
        self.settings = Settings(database_path=self.db_path)
        self.database = Database(self.db_path)
        self.app = create_app(database=self.database, settings=self.settings)

    def tearDown(self) -> None:
        self._tempdir.cleanup()

    def _create(self, client: TestClient, **payload: str):
        return client.post("/users", json=payload)

    @staticmethod
    def _created_id(text: str) -> int:
        match = re.search(r"ID: (\d+)", text)
        assert match is not None, text
        return int(match.group(1))

    def test_homepage_links_admin_pages(self) -> None:
        with TestClient(self.app) as client:
            response = client.get("/")

        self.assertEqual(response.status_code, 200)
        self.assertIn("text/html", response.headers["content-type"])
        self.assertIn("Welcome to the Userdesk API Server!", response.text)
        self.assertIn('href="/admin/logs"', response.text)
        self.assertIn('href="/admin/stats"', response.text)
        self.assertIn("Activity Logs", response.text)
        self.assertIn("Database Stats", response.text)
        self.assertIn("Database: SQLite", response.text)
        self.assertIn('class="endpoint"', response.text)
        self.assertIn('class="method get"', response.text)

    def test_health_and_status_pages(self) -> None:
        with TestClient(self.app) as client:
            health = client.get("/health")
            status = client.get("/status")

        self.assertEqual(health.status_code, 200)
        self.assertIn("Health Check", health.text)
        self.assertIn("Server is HEALTHY", health.text)
        self.assertIn("Uptime:", health.text)
        self.assertIn("Memory Usage:", health.text)

        self.assertEqual(status.status_code, 200)
        self.assertIn("Server Status", status.text)
        self.assertIn("RUNNING", status.text)
        self.assertIn("PYTHON VERSION", status.text)
        self.assertIn("PLATFORM", status.text)

    def test_api_index_lists_endpoints(self) -> None:
        with TestClient(self.app) as client:
            response = client.get("/api")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["version"], "1.0.0")
        self.assertIn("GET /admin/stats", payload["endpoints"])

    def test_users_directory_shows_seeded_users(self) -> None:
        with TestClient(self.app) as client:
            response = client.get("/users")

        self.assertEqual(response.status_code, 200)
        self.assertIn("Users Directory", response.text)
        self.assertIn("Total Users: 3", response.text)
        self.assertIn("John Doe", response.text)
        self.assertIn("Jane Smith", response.text)

    def test_read_user_by_id(self) -> None:
        with TestClient(self.app) as client:
            found = client.get("/users/1")
            missing = client.get("/users/999")

        self.assertEqual(found.status_code, 200)
        self.assertEqual(found.json()["success"], True)
        self.assertEqual(found.json()["data"]["name"], "John Doe")
        self.assertEqual(found.json()["data"]["email"], "john@example.com")

        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json(), {"success": False, "message": "User not found"})

    def test_create_duplicate_and_delete_flow(self) -> None:
        with TestClient(self.app) as client:
            created = self._create(client, name="Ann", email="ann@x.com", role="admin")
            self.assertEqual(created.status_code, 201, created.text)
            self.assertIn("User Created Successfully!", created.text)
            user_id = self._created_id(created.text)

            fetched = client.get(f"/users/{user_id}").json()["data"]
            self.assertEqual(fetched["name"], "Ann")
            self.assertEqual(fetched["role"], "admin")

            count_before = self.database.count_users()
            duplicate = self._create(client, name="Ann Again", email="ann@x.com")
            self.assertEqual(duplicate.status_code, 409, duplicate.text)
            self.assertEqual(duplicate.json()["success"], False)
            self.assertEqual(self.database.count_users(), count_before)

            first_delete = client.delete(f"/users/{user_id}")
            second_delete = client.delete(f"/users/{user_id}")

        self.assertEqual(first_delete.status_code, 200)
        self.assertEqual(first_delete.json()["success"], True)
        self.assertEqual(second_delete.status_code, 404)

    def test_create_user_from_html_form(self) -> None:
        with TestClient(self.app) as client:
            form = client.get("/users-form")
            created = client.post("/users", data={"name": "Form User", "email": "form@example.com"})

            self.assertEqual(form.status_code, 200)
            self.assertIn("Create New User", form.text)
            self.assertIn('name="email"', form.text)

            self.assertEqual(created.status_code, 201, created.text)
            user = client.get(f"/users/{self._created_id(created.text)}").json()["data"]

        self.assertEqual(user["role"], "user")

    def test_missing_fields_are_rejected(self) -> None:
        with TestClient(self.app) as client:
            missing_email = self._create(client, name="No Email")
            empty = client.post("/users")
            blank = self._create(client, name="  ", email="blank@example.com")

        for response in (missing_email, empty, blank):
            self.assertEqual(response.status_code, 400, response.text)
            self.assertEqual(response.json(), {"success": False, "message": "Name and email are required"})

    def test_user_input_is_escaped_in_html(self) -> None:
        with TestClient(self.app) as client:
            script = self._create(client, name='<script>alert("XSS")</script>', email="xss@example.com")
            special = self._create(client, name="José María O'Connor-Smith", email="special@example.com")

        self.assertEqual(script.status_code, 201)
        self.assertNotIn("<script>", script.text)
        self.assertIn("&lt;script&gt;", script.text)
        self.assertIn("José María O&#39;Connor-Smith", special.text)

    def test_update_user(self) -> None:
        with TestClient(self.app) as client:
            user_id = self._created_id(self._create(client, name="Original", email="orig@example.com").text)

            updated = client.put(
                f"/users/{user_id}",
                json={"name": "Updated", "email": "updated@example.com", "role": "admin"},
            )
            missing = client.put("/users/999", json={"name": "Ghost", "email": "ghost@example.com"})
            conflict = client.put(f"/users/{user_id}", json={"name": "Updated", "email": "john@example.com"})

        self.assertEqual(updated.status_code, 200, updated.text)
        self.assertEqual(updated.json()["data"]["email"], "updated@example.com")
        self.assertEqual(updated.json()["data"]["role"], "admin")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(conflict.status_code, 409)

    def test_echo_returns_request_body(self) -> None:
        body = {
            "string": "hello",
            "number": 42,
            "boolean": True,
            "array": [1, 2, 3],
            "object": {"nested": "value"},
            "null_value": None,
        }
        with TestClient(self.app) as client:
            response = client.post("/echo", json=body)

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["message"], "Echo response")
        self.assertEqual(payload["receivedData"], body)
        self.assertEqual(payload["method"], "POST")
        self.assertIn("timestamp", payload)

    def test_unknown_routes_return_json_404(self) -> None:
        with TestClient(self.app) as client:
            get_missing = client.get("/non-existent-route")
            post_missing = client.post("/invalid-endpoint", json={"test": "data"})

        self.assertEqual(get_missing.status_code, 404)
        payload = get_missing.json()
        self.assertEqual(payload["message"], "Endpoint not found")
        self.assertEqual(payload["requestedPath"], "/non-existent-route")
        self.assertEqual(payload["method"], "GET")
        self.assertIsInstance(payload["availableEndpoints"], list)

        self.assertEqual(post_missing.status_code, 404)
        self.assertEqual(post_missing.json()["method"], "POST")

    def test_every_request_is_recorded(self) -> None:
        with TestClient(self.app) as client:
            client.get("/health")
            client.get("/does-not-exist")
            logs = self.database.get_logs(10)

        self.assertEqual([entry.message for entry in logs], ["GET /does-not-exist", "GET /health"])
        entry = logs[1]
        self.assertEqual(entry.level, "INFO")
        self.assertEqual(entry.endpoint, "/health")
        self.assertEqual(entry.user_agent, "testclient")
        self.assertEqual(entry.ip_address, "testclient")

    def test_admin_pages_report_logs_and_stats(self) -> None:
        with TestClient(self.app) as client:
            client.get("/health")
            logs_page = client.get("/admin/logs")
            stats_page = client.get("/admin/stats")
            stats = client.get("/api/stats").json()["data"]
            api_logs = client.get("/api/logs", params={"limit": 2}).json()

        self.assertIn("System Activity Logs", logs_page.text)
        self.assertIn("GET /health", logs_page.text)
        self.assertIn("Database Statistics", stats_page.text)

        self.assertEqual(stats["totalUsers"], 3)
        self.assertEqual(stats["adminUsers"], 1)
        self.assertEqual(stats["totalLogs"], 4)
        self.assertEqual(stats["recentLogs"], 4)

        self.assertEqual(api_logs["count"], 2)
        self.assertEqual(api_logs["data"][0]["message"], "GET /api/logs")

    def test_logging_failure_does_not_break_requests(self) -> None:
        database = FailingLogDatabase(self.db_path)
        app = create_app(database=database, settings=self.settings)

        with TestClient(app) as client:
            response = client.get("/api")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(app.state.activity_log_failures, 1)

    def test_storage_failures_become_500(self) -> None:
        database = BrokenReadDatabase(self.db_path)
        app = create_app(database=database, settings=self.settings)

        with TestClient(app) as client:
            response = client.get("/users")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"success": False, "message": "Internal server error"})

    def test_unavailable_storage_becomes_503(self) -> None:
        database = ClosedReadDatabase(self.db_path)
        app = create_app(database=database, settings=self.settings)

        with TestClient(app) as client:
            response = client.get("/api/stats")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json(), {"success": False, "message": "Service unavailable"})

    def test_non_numeric_user_id_is_not_found(self) -> None:
        with TestClient(self.app) as client:
            read = client.get("/users/abc")
            update = client.put("/users/abc", json={"name": "X", "email": "x@example.com"})
            delete = client.delete("/users/abc")
            remaining = self.database.count_users()

        for response in (read, update, delete):
            self.assertEqual(response.status_code, 404, response.text)
            self.assertEqual(response.json(), {"success": False, "message": "User not found"})
        self.assertEqual(remaining, 3)

    def test_database_lifecycle_follows_application(self) -> None:
        self.assertFalse(self.database.is_open)
        with TestClient(self.app):
            self.assertTrue(self.database.is_open)
        self.assertFalse(self.database.is_open)

    def test_startup_fails_when_storage_cannot_open(self) -> None:
        app = create_app(database=Database(Path(self._tempdir.name)), settings=self.settings)

        with self.assertRaises(StorageUnavailable):
            with TestClient(app):
                pass

    def test_seeding_can_be_disabled(self) -> None:
        settings = Settings(database_path=self.db_path, seed_on_startup=False)
        app = create_app(settings=settings)

        with TestClient(app) as client:
            response = client.get("/users")

        self.assertIn("Total Users: 0", response.text)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
