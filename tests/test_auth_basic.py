import base64
import unittest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from incident_bridge.security import BasicAuthMiddleware, parse_basic_auth


def _header(raw: bytes) -> str:
    return "Basic " + base64.b64encode(raw).decode("ascii")


class BasicAuthParsingTests(unittest.TestCase):
    def test_parse_basic_auth_valid(self):
        creds = parse_basic_auth(_header(b"user:pass"))
        self.assertIsNotNone(creds)
        assert creds is not None
        self.assertEqual(creds.username, "user")
        self.assertEqual(creds.password, "pass")

    def test_password_may_contain_colons(self):
        creds = parse_basic_auth(_header(b"user:pa:ss"))
        assert creds is not None
        self.assertEqual(creds.password, "pa:ss")

    def test_parse_basic_auth_invalid_scheme(self):
        token = base64.b64encode(b"user:pass").decode("ascii")
        self.assertIsNone(parse_basic_auth(f"Bearer {token}"))

    def test_parse_basic_auth_invalid_base64(self):
        self.assertIsNone(parse_basic_auth("Basic !!!notbase64!!!"))

    def test_parse_basic_auth_missing_colon(self):
        self.assertIsNone(parse_basic_auth(_header(b"userpass")))

    def test_parse_basic_auth_empty(self):
        self.assertIsNone(parse_basic_auth(""))


class BasicAuthMiddlewareTests(unittest.TestCase):
    def setUp(self):
        app = FastAPI()
        app.add_middleware(BasicAuthMiddleware, username="admin", password="s3cret", open_paths={"/health"})

        @app.get("/health")
        def health():
            return {"status": "healthy"}

        @app.get("/api/sync/runs")
        def runs():
            return []

        self.client = TestClient(app)

    def test_open_path_needs_no_credentials(self):
        self.assertEqual(self.client.get("/health").status_code, 200)

    def test_missing_credentials_are_challenged(self):
        response = self.client.get("/api/sync/runs")
        self.assertEqual(response.status_code, 401)
        self.assertIn('realm="IncidentBridge"', response.headers["WWW-Authenticate"])

    def test_wrong_password_is_rejected(self):
        response = self.client.get("/api/sync/runs", headers={"Authorization": _header(b"admin:nope")})
        self.assertEqual(response.status_code, 401)

    def test_valid_credentials_pass(self):
        response = self.client.get("/api/sync/runs", headers={"Authorization": _header(b"admin:s3cret")})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])


if __name__ == "__main__":
    unittest.main()
