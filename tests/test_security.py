from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any
from unittest.mock import patch

from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from officeflow.audit import actor_type_for, client_ip
from officeflow.errors import AuthorizationError
from officeflow.models import AuditActorType
from officeflow.security import CallerContext, decode_token, get_caller, require_supervisor
from officeflow.settings import Settings

SECRET = "unit-test-secret"


def _settings() -> Settings:
    return Settings(jwt_secret=SECRET)


def _token(**overrides: Any) -> str:
    claims: dict[str, Any] = {
        "sub": "u-70",
        "role": "employee",
        "name": "Kamran Butt",
        "iss": "officeflow",
        "aud": "officeflow-api",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    claims.update(overrides)
    secret = claims.pop("_secret", SECRET)
    return jwt.encode({key: value for key, value in claims.items() if value is not None}, secret, algorithm="HS256")


class TokenTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch("officeflow.security.get_settings", return_value=_settings())
        patcher.start()
        self.addCleanup(patcher.stop)

    def _request(self) -> Any:
        return SimpleNamespace(state=SimpleNamespace())

    def test_valid_token_builds_caller(self) -> None:
        request = self._request()
        caller = get_caller(request, HTTPAuthorizationCredentials(scheme="Bearer", credentials=_token()))
        self.assertEqual(caller, CallerContext(subject="u-70", role="employee", name="Kamran Butt"))
        self.assertFalse(caller.is_supervisor)
        self.assertEqual(request.state.actor_id, "u-70")

    def test_missing_credentials(self) -> None:
        with self.assertRaises(AuthorizationError) as exc:
            get_caller(self._request(), None)
        self.assertEqual(exc.exception.status_code, 401)
        self.assertEqual(exc.exception.code, "INVALID_TOKEN")

    def test_expired_token(self) -> None:
        token = _token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))
        with self.assertRaises(AuthorizationError) as exc:
            decode_token(token)
        self.assertEqual(exc.exception.status_code, 401)

    def test_wrong_secret_and_audience(self) -> None:
        for token in (_token(_secret="other-secret"), _token(aud="someone-else"), _token(iss="elsewhere")):
            with self.assertRaises(AuthorizationError) as exc:
                decode_token(token)
            self.assertEqual(exc.exception.code, "INVALID_TOKEN")

    def test_missing_subject(self) -> None:
        with self.assertRaises(AuthorizationError) as exc:
            decode_token(_token(sub=None))
        self.assertEqual(exc.exception.status_code, 401)

    def test_unknown_role_is_forbidden(self) -> None:
        with self.assertRaises(AuthorizationError) as exc:
            decode_token(_token(role="janitor"))
        self.assertEqual(exc.exception.status_code, 403)
        self.assertEqual(exc.exception.code, "FORBIDDEN")

    def test_require_supervisor(self) -> None:
        admin = CallerContext(subject="a-1", role="admin")
        self.assertIs(require_supervisor(admin), admin)
        with self.assertRaises(AuthorizationError):
            require_supervisor(CallerContext(subject="u-1", role="employee"))


class AuditHelperTests(unittest.TestCase):
    def test_client_ip_prefers_forwarded_for(self) -> None:
        request = SimpleNamespace(headers={"x-forwarded-for": "10.0.0.5, 172.16.0.1"}, client=SimpleNamespace(host="127.0.0.1"))
        self.assertEqual(client_ip(request), "10.0.0.5")  # type: ignore[arg-type]
        request = SimpleNamespace(headers={}, client=SimpleNamespace(host="127.0.0.1"))
        self.assertEqual(client_ip(request), "127.0.0.1")  # type: ignore[arg-type]
        request = SimpleNamespace(headers={}, client=None)
        self.assertIsNone(client_ip(request))  # type: ignore[arg-type]

    def test_actor_type(self) -> None:
        self.assertEqual(actor_type_for(None), AuditActorType.SYSTEM)
        self.assertEqual(actor_type_for(CallerContext(subject="s", role="supervisor")), AuditActorType.SUPERVISOR)
        self.assertEqual(actor_type_for(CallerContext(subject="e", role="employee")), AuditActorType.EMPLOYEE)


if __name__ == "__main__":
    unittest.main()
