# tests/test_auth.py

from __future__ import annotations

from datetime import timedelta

import lawpractice.auth as auth
from lawpractice.auth import RateLimiter, create_access_token, create_user_token, verify_token


def test_rate_limiter_window_slides(monkeypatch) -> None:
    clock = [100.0]
    monkeypatch.setattr(auth.time, "monotonic", lambda: clock[0])
    limiter = RateLimiter(max_attempts=2, window_seconds=10)

    assert limiter.hit("10.0.0.1")
    assert limiter.hit("10.0.0.1")
    assert not limiter.hit("10.0.0.1")
    assert limiter.is_allowed("10.0.0.2")

    clock[0] += 10
    assert limiter.is_allowed("10.0.0.1")

    limiter.record("10.0.0.1")
    limiter.record("10.0.0.1")
    limiter.reset("10.0.0.1")
    assert limiter.is_allowed("10.0.0.1")


def test_user_token_claims(lawyer) -> None:
    claims = verify_token(create_user_token(lawyer))

    assert claims["sub"] == str(lawyer.id)
    assert claims["firm"] == lawyer.firm_id
    assert claims["role"] == "LAWYER"
    assert claims["exp"] > claims["iat"]
    assert verify_token("not-a-token") is None


def test_token_pinned_to_firm(api, lawyer) -> None:
    forged = create_access_token({"sub": str(lawyer.id), "firm": lawyer.firm_id + 1})
    response = api.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {forged}"})
    assert response.status_code == 401


def test_expired_token_rejected(api, lawyer) -> None:
    expired = create_access_token({"sub": str(lawyer.id), "firm": lawyer.firm_id}, timedelta(seconds=-5))
    response = api.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Could not validate credentials"


def test_successful_login_clears_failures(api, admin) -> None:
    for _ in range(4):
        api.post("/api/v1/auth/login", json={"username": "admin", "password": "wrong"})
    assert api.post("/api/v1/auth/login", json={"username": "admin", "password": "password123"}).status_code == 200

    codes = [
        api.post("/api/v1/auth/login", json={"username": "admin", "password": "wrong"}).status_code
        for _ in range(5)
    ]
    assert codes == [401] * 5
