"""
Auth provider abstraction for Supabase Auth (GoTrue) and an in-memory test double.

The service keeps no user table of its own: every credential check, sign-up
and sign-out is delegated to the provider.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

from portfolio_backend.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "authenticated"


@dataclass(frozen=True)
class Identity:
    id: str
    email: Optional[str] = None
    role: str = DEFAULT_ROLE

    @classmethod
    def from_user(cls, user: dict) -> "Identity":
        app_metadata = user.get("app_metadata") or {}
        role = app_metadata.get("role") or user.get("role") or DEFAULT_ROLE
        return cls(id=str(user.get("id")), email=user.get("email"), role=role)

    def as_dict(self) -> dict:
        return {"id": self.id, "email": self.email, "role": self.role}


@dataclass
class AuthSession:
    user: dict
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = None

    def as_dict(self) -> dict:
        session = None
        if self.access_token:
            session = {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "expires_in": self.expires_in,
                "token_type": self.token_type,
            }
        return {"user": self.user, "session": session}


class AuthClient(Protocol):
    """Operations the API needs from the identity provider."""

    def get_user(self, access_token: str) -> Optional[Identity]:
        """Resolve a bearer token; None when it is invalid or expired."""
        ...

    def sign_in(self, email: str, password: str) -> AuthSession:
        ...

    def sign_up(self, email: str, password: str) -> AuthSession:
        ...

    def sign_out(self, access_token: str) -> None:
        ...


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if not isinstance(payload, dict):
        return str(payload)
    for key in ("msg", "error_description", "message", "error"):
        if payload.get(key):
            return str(payload[key])
    return f"HTTP {response.status_code}"


def _error_code(response: requests.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        return payload.get("error_code") or payload.get("code")
    return None


@dataclass
class SupabaseAuthClient:
    """Talks to the GoTrue REST API exposed under ``<SUPABASE_URL>/auth/v1``."""

    url: str
    api_key: str
    timeout: float = 10.0
    session: requests.Session = field(default_factory=requests.Session)

    def _endpoint(self, path: str) -> str:
        return f"{self.url.rstrip('/')}/auth/v1/{path.lstrip('/')}"

    def _headers(self, access_token: Optional[str] = None) -> dict:
        headers = {"apikey": self.api_key, "Content-Type": "application/json"}
        headers["Authorization"] = f"Bearer {access_token or self.api_key}"
        return headers

    def _raise_for_error(self, response: requests.Response) -> None:
        if response.ok:
            return
        raise UpstreamError(
            _error_message(response),
            status_code=response.status_code,
            code=_error_code(response),
        )

    def get_user(self, access_token: str) -> Optional[Identity]:
        response = self.session.get(
            self._endpoint("user"),
            headers=self._headers(access_token),
            timeout=self.timeout,
        )
        if response.status_code in (401, 403):
            return None
        self._raise_for_error(response)
        user = response.json()
        if not isinstance(user, dict) or not user.get("id"):
            return None
        return Identity.from_user(user)

    @staticmethod
    def _to_session(payload: dict) -> AuthSession:
        # Sign-up without auto-confirm returns the bare user object.
        user = payload.get("user") or payload
        return AuthSession(
            user=user,
            access_token=payload.get("access_token"),
            refresh_token=payload.get("refresh_token"),
            expires_in=payload.get("expires_in"),
            token_type=payload.get("token_type"),
        )

    def sign_in(self, email: str, password: str) -> AuthSession:
        response = self.session.post(
            self._endpoint("token"),
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._headers(),
            timeout=self.timeout,
        )
        self._raise_for_error(response)
        return self._to_session(response.json())

    def sign_up(self, email: str, password: str) -> AuthSession:
        response = self.session.post(
            self._endpoint("signup"),
            json={"email": email, "password": password},
            headers=self._headers(),
            timeout=self.timeout,
        )
        self._raise_for_error(response)
        return self._to_session(response.json())

    def sign_out(self, access_token: str) -> None:
        response = self.session.post(
            self._endpoint("logout"),
            headers=self._headers(access_token),
            timeout=self.timeout,
        )
        self._raise_for_error(response)


class InMemoryAuthClient:
    """Test double for the identity provider."""

    def __init__(self):
        self.users: dict[str, dict] = {}
        self.tokens: dict[str, Identity] = {}

    def add_user(self, email: str, password: str, role: str = DEFAULT_ROLE) -> dict:
        user = {
            "id": uuid.uuid4().hex,
            "email": email,
            "role": DEFAULT_ROLE,
            "app_metadata": {"role": role},
            "password": password,
        }
        self.users[email] = user
        return user

    def issue_token(self, email: str) -> str:
        user = self.users[email]
        token = uuid.uuid4().hex
        self.tokens[token] = Identity.from_user(user)
        return token

    def get_user(self, access_token: str) -> Optional[Identity]:
        return self.tokens.get(access_token)

    def sign_in(self, email: str, password: str) -> AuthSession:
        user = self.users.get(email)
        if user is None or user["password"] != password:
            raise UpstreamError("Invalid login credentials", status_code=400)
        token = self.issue_token(email)
        public_user = {k: v for k, v in user.items() if k != "password"}
        return AuthSession(
            user=public_user,
            access_token=token,
            expires_in=3600,
            token_type="bearer",
        )

    def sign_up(self, email: str, password: str) -> AuthSession:
        if email in self.users:
            raise UpstreamError("User already registered", status_code=422)
        user = self.add_user(email, password)
        return AuthSession(user={k: v for k, v in user.items() if k != "password"})

    def sign_out(self, access_token: str) -> None:
        self.tokens.pop(access_token, None)

    def reset(self) -> None:
        self.users.clear()
        self.tokens.clear()
