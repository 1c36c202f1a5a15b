import unittest

from fastapi.testclient import TestClient

from portfolio_backend.app import create_app
from portfolio_backend.auth import InMemoryAuthClient
from portfolio_backend.config import Settings
from portfolio_backend.db import InMemoryRecordStore
from portfolio_backend.dependencies import (
    get_auth_client,
    get_record_store,
    get_storage_client,
)
from portfolio_backend.rate_limit import InMemoryRateLimiter
from portfolio_backend.storage import InMemoryStorageClient

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


def _project(**overrides):
    payload = {
        "title": "Portfolio",
        "description": "A portfolio website",
        "imageSrc": "https://cdn.example.com/a.png",
    }
    payload.update(overrides)
    return payload


class ApiTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self):
        options = {"use_in_memory_backends": True, "node_env": "test"}
        options.update(self.settings_overrides)
        settings = Settings(**options)
        self.limiter = InMemoryRateLimiter()
        self.app = create_app(settings, rate_limiter=self.limiter)

        self.store = InMemoryRecordStore()
        self.storage = InMemoryStorageClient(base_url="https://example.test/storage")
        self.auth = InMemoryAuthClient()
        self.app.dependency_overrides[get_record_store] = lambda: self.store
        self.app.dependency_overrides[get_storage_client] = lambda: self.storage
        self.app.dependency_overrides[get_auth_client] = lambda: self.auth

        self.auth.add_user("admin@example.com", "Secret123!", role="admin")
        self.auth.add_user("user@example.com", "Secret123!")
        self.admin = {"Authorization": f"Bearer {self.auth.issue_token('admin@example.com')}"}
        self.user = {"Authorization": f"Bearer {self.auth.issue_token('user@example.com')}"}

        self.client = TestClient(self.app)


class HealthAndRoutingTests(ApiTestCase):
    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "OK")
        self.assertEqual(body["environment"], "test")

    def test_security_headers(self):
        response = self.client.get("/health")
        self.assertEqual(response.headers["X-Frame-Options"], "DENY")
        self.assertEqual(response.headers["X-Content-Type-Options"], "nosniff")
        self.assertIn("default-src 'self'", response.headers["Content-Security-Policy"])
        self.assertNotIn("Strict-Transport-Security", response.headers)

        secure = self.client.get("/health", headers={"X-Forwarded-Proto": "https"})
        self.assertIn("max-age=31536000", secure.headers["Strict-Transport-Security"])

    def test_root_lists_endpoints(self):
        body = self.client.get("/").json()
        self.assertEqual(body["endpoints"]["projects"], "/api/projects")

    def test_unknown_route(self):
        response = self.client.get("/api/nothing-here")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.json(),
            {"success": False, "error": "Route /api/nothing-here does not exist on this server"},
        )


class ProjectApiTests(ApiTestCase):
    def test_read_projects_is_public(self):
        self.store.insert_project({"image_src": "https://x.test/a.png", "title": "One", "description": "First project"})
        response = self.client.get("/api/projects/read")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"][0]["title"], "One")

    def test_create_with_image_url(self):
        response = self.client.post("/api/projects/create", json=_project(), headers=self.user)
        self.assertEqual(response.status_code, 201)
        data = response.json()["data"]
        self.assertEqual(data["imageSrc"], "https://cdn.example.com/a.png")
        self.assertEqual(len(self.store.projects), 1)

    def test_create_requires_token(self):
        response = self.client.post("/api/projects/create", json=_project())
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Access token required")

    def test_create_with_unknown_token(self):
        response = self.client.post(
            "/api/projects/create", json=_project(), headers={"Authorization": "Bearer nope"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Invalid or expired token")

    def test_create_without_any_image_is_rejected_before_storage(self):
        payload = _project()
        del payload["imageSrc"]
        response = self.client.post("/api/projects/create", json=payload, headers=self.admin)
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertIn("image", body["error"])
        self.assertEqual(self.store.projects, {})
        self.assertEqual(self.storage.stored_objects, {})

    def test_create_with_uploaded_file(self):
        payload = _project()
        del payload["imageSrc"]
        response = self.client.post(
            "/api/projects/create",
            data=payload,
            files={"image": ("cover.png", PNG_BYTES, "image/png")},
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 201)
        data = response.json()["data"]
        self.assertTrue(data["imageSrc"].startswith("https://example.test/storage/projects/"))
        stored = list(self.storage.stored_objects.values())
        self.assertEqual(stored, [(PNG_BYTES, "image/png")])

    def test_create_rejects_non_image_upload(self):
        response = self.client.post(
            "/api/projects/create",
            data={"title": "Portfolio", "description": "A portfolio website"},
            files={"image": ("notes.txt", b"hello", "text/plain")},
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Only image files are allowed")
        self.assertEqual(self.store.projects, {})

    def test_sql_statement_in_field_is_rejected(self):
        response = self.client.post(
            "/api/projects/create",
            json=_project(title="1; DROP TABLE users"),
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["details"][0]["field"], "title")
        self.assertEqual(self.store.projects, {})

    def test_markup_is_stripped(self):
        response = self.client.post(
            "/api/projects/create",
            json=_project(title="<b>Hello</b> world"),
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["data"]["title"], "Hello world")

    def test_malformed_json(self):
        response = self.client.post(
            "/api/projects/create",
            content=b"{not json",
            headers={**self.admin, "Content-Type": "application/json"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Malformed JSON body")

    def test_unsupported_content_type(self):
        response = self.client.post(
            "/api/projects/create",
            content=b"title=Portfolio",
            headers={**self.admin, "Content-Type": "text/plain"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Unsupported content type")
        self.assertEqual(self.store.projects, {})

    def test_update_requires_admin(self):
        row = self.store.insert_project({"image_src": "https://x.test/a.png", "title": "One", "description": "First project"})
        response = self.client.patch(
            f"/api/projects/update/{row['id']}", json={"title": "Two"}, headers=self.user
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.store.get_project(row["id"])["title"], "One")

    def test_partial_update(self):
        row = self.store.insert_project({"image_src": "https://x.test/a.png", "title": "One", "description": "First project"})
        response = self.client.patch(
            f"/api/projects/update/{row['id']}",
            json={"githubLink": "https://github.com/me/one"},
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["title"], "One")
        self.assertEqual(data["githubLink"], "https://github.com/me/one")

    def test_update_with_file_replaces_prior_image(self):
        prior_url = self.storage.upload_bytes("projects/old.png", b"old", "image/png")
        row = self.store.insert_project({"image_src": prior_url, "title": "One", "description": "First project"})

        response = self.client.patch(
            f"/api/projects/update/{row['id']}",
            files={"image": ("new.png", PNG_BYTES, "image/png")},
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 200)
        self.assertNotEqual(response.json()["data"]["imageSrc"], prior_url)
        self.assertEqual(self.storage.deleted_paths, ["projects/old.png"])

    def test_update_rejects_explicit_null(self):
        row = self.store.insert_project({"image_src": "https://x.test/a.png", "title": "One", "description": "First project"})
        response = self.client.patch(
            f"/api/projects/update/{row['id']}", json={"title": None}, headers=self.admin
        )
        self.assertEqual(response.status_code, 400)
        detail = response.json()["details"][0]
        self.assertEqual(detail["field"], "title")
        self.assertEqual(detail["message"], "'title' must be a string")
        self.assertEqual(self.store.get_project(row["id"])["title"], "One")

    def test_update_rejects_non_positive_id(self):
        response = self.client.patch("/api/projects/update/0", json={"title": "Two"}, headers=self.admin)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid parameters")

    def test_update_missing_project(self):
        response = self.client.patch("/api/projects/update/99", json={"title": "Two"}, headers=self.admin)
        self.assertEqual(response.status_code, 404)

    def test_delete_project(self):
        row = self.store.insert_project({"image_src": "https://x.test/a.png", "title": "One", "description": "First project"})
        response = self.client.delete(f"/api/projects/delete/{row['id']}", headers=self.admin)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["id"], row["id"])

        again = self.client.delete(f"/api/projects/delete/{row['id']}", headers=self.admin)
        self.assertEqual(again.status_code, 404)

    def test_delete_rate_limit(self):
        for _ in range(5):
            self.client.delete("/api/projects/delete/99", headers=self.admin)
        response = self.client.delete("/api/projects/delete/99", headers=self.admin)
        self.assertEqual(response.status_code, 429)
        body = response.json()
        self.assertGreater(body["retryAfter"], 0)
        self.assertEqual(response.headers["Retry-After"], str(body["retryAfter"]))


class ProfileApiTests(ApiTestCase):
    def test_read_without_profile(self):
        response = self.client.get("/api/profiles/read")
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()["data"])

    def test_create_then_update_keeps_single_row(self):
        created = self.client.post(
            "/api/profiles/create",
            json={
                "nombre": "Ada",
                "perfilUrl": "https://example.com/ada.png",
                "contactEmail": "ada@example.com",
            },
            headers=self.user,
        )
        self.assertEqual(created.status_code, 201)

        updated = self.client.post(
            "/api/profiles/create",
            json={"nombre": "Ada Lovelace", "aboutMeDescription": "Engineer and writer"},
            headers=self.user,
        )
        self.assertEqual(updated.status_code, 201)
        self.assertEqual(len(self.store.presenters), 1)

        data = self.client.get("/api/profiles/read").json()["data"]
        self.assertEqual(data["nombre"], "Ada Lovelace")
        self.assertEqual(data["contactEmail"], "ada@example.com")

    def test_patch_update(self):
        self.store.upsert_presenter({"nombre": "Ada", "contact_email": "ada@example.com"})
        response = self.client.patch(
            "/api/profiles/update", json={"aboutMeDescription": "Engineer and writer"}, headers=self.user
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["aboutMeDescription"], "Engineer and writer")

    def test_create_requires_token(self):
        response = self.client.post("/api/profiles/create", json={"nombre": "Ada"})
        self.assertEqual(response.status_code, 401)

    def test_null_fields_are_rejected(self):
        created = self.client.post("/api/profiles/create", json={"nombre": None}, headers=self.user)
        self.assertEqual(created.status_code, 400)
        self.assertEqual(created.json()["details"][0]["field"], "nombre")

        self.store.upsert_presenter({"nombre": "Ada", "contact_email": "ada@example.com"})
        updated = self.client.patch(
            "/api/profiles/update", json={"contactEmail": None}, headers=self.user
        )
        self.assertEqual(updated.status_code, 400)
        self.assertEqual(self.store.get_presenter()["contact_email"], "ada@example.com")


class UserApiTests(ApiTestCase):
    def test_login(self):
        response = self.client.post(
            "/api/users/login", json={"email": "admin@example.com", "password": "Secret123!"}
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertTrue(body["data"]["session"]["access_token"])

    def test_login_with_bad_credentials(self):
        response = self.client.post(
            "/api/users/login", json={"email": "admin@example.com", "password": "wrong"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Invalid credentials")

    def test_register_requires_token(self):
        response = self.client.post(
            "/api/users/register", json={"email": "new@example.com", "password": "Secret123!"}
        )
        self.assertEqual(response.status_code, 401)

    def test_register_and_duplicate(self):
        payload = {"email": "new@example.com", "password": "Secret123!"}
        response = self.client.post("/api/users/register", json=payload, headers=self.admin)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["data"]["user"]["email"], "new@example.com")

        duplicate = self.client.post("/api/users/register", json=payload, headers=self.admin)
        self.assertEqual(duplicate.status_code, 409)

    def test_register_rejects_weak_password(self):
        response = self.client.post(
            "/api/users/register",
            json={"email": "new@example.com", "password": "weakpassword"},
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["details"][0]["field"], "password")

    def test_logout_revokes_token(self):
        response = self.client.post("/api/users/logout", headers=self.user)
        self.assertEqual(response.status_code, 200)

        again = self.client.post("/api/users/logout", headers=self.user)
        self.assertEqual(again.status_code, 401)


class GlobalRateLimitTests(ApiTestCase):
    settings_overrides = {"global_rate_limit_max": 2}

    def test_global_limit_applies_to_api_routes(self):
        for _ in range(2):
            self.assertEqual(self.client.get("/api/projects/read").status_code, 200)
        response = self.client.get("/api/projects/read")
        self.assertEqual(response.status_code, 429)
        self.assertFalse(response.json()["success"])
        self.assertEqual(response.headers["X-Frame-Options"], "DENY")

    def test_health_is_exempt(self):
        for _ in range(5):
            self.assertEqual(self.client.get("/health").status_code, 200)

    def test_forwarded_header_is_ignored_by_default(self):
        for hop in ("10.0.0.1", "10.0.0.2"):
            response = self.client.get("/api/projects/read", headers={"X-Forwarded-For": hop})
            self.assertEqual(response.status_code, 200)
        response = self.client.get("/api/projects/read", headers={"X-Forwarded-For": "10.0.0.3"})
        self.assertEqual(response.status_code, 429)


class TrustedProxyRateLimitTests(ApiTestCase):
    settings_overrides = {"global_rate_limit_max": 2, "trust_proxy": True}

    def test_last_forwarded_hop_is_the_client(self):
        spoofed = {"X-Forwarded-For": "6.6.6.6, 10.0.0.1"}
        for _ in range(2):
            self.assertEqual(self.client.get("/api/projects/read", headers=spoofed).status_code, 200)
        self.assertEqual(self.client.get("/api/projects/read", headers=spoofed).status_code, 429)

        other = {"X-Forwarded-For": "6.6.6.6, 10.0.0.2"}
        self.assertEqual(self.client.get("/api/projects/read", headers=other).status_code, 200)


class ErrorBodyTests(ApiTestCase):
    def test_stack_included_outside_production(self):
        response = self.client.delete("/api/projects/delete/99", headers=self.admin)
        self.assertIn("stack", response.json())


class ProductionErrorBodyTests(ApiTestCase):
    settings_overrides = {"node_env": "production"}

    def test_stack_omitted_in_production(self):
        response = self.client.delete("/api/projects/delete/99", headers=self.admin)
        self.assertEqual(response.status_code, 404)
        self.assertNotIn("stack", response.json())


if __name__ == "__main__":
    unittest.main()
