from urllib.parse import quote

from eth_account.signers.local import LocalAccount
from fastapi import FastAPI
from fastapi.testclient import TestClient

from arcade_gate.api.v1.dependencies import ServiceContainer
from arcade_gate.schemas.session import MAX_TELEMETRY_EVENTS
from arcade_gate.services.ledger import LedgerFunction
from tests.conftest import APP_ORIGIN, ZERO_ADDRESS, FakeClock, FakeLedgerClient


def _session(client: TestClient) -> tuple[str, str]:
    response = client.get("/api/csrf", headers={"X-App-Origin": APP_ORIGIN})
    assert response.status_code == 200
    return response.cookies["sessionId"], response.json()["token"]


def _action(
    client: TestClient,
    session_id: str,
    token: str,
    payload: dict,
    game_sig: str | None = None,
):
    cookie = f"sessionId={session_id}"
    if game_sig is not None:
        cookie += f"; gameSig={quote(game_sig, safe='')}"
    return client.post(
        "/api/session-action",
        json=payload,
        headers={"X-CSRF-Token": token, "X-App-Origin": APP_ORIGIN, "Cookie": cookie},
    )


def test_csrf_endpoint_sets_strict_session_cookie(client: TestClient) -> None:
    response = client.get("/api/csrf", headers={"X-App-Origin": APP_ORIGIN})

    assert response.status_code == 200
    assert len(response.json()["token"]) == 64
    set_cookie = response.headers["set-cookie"].lower()
    assert set_cookie.startswith("sessionid=")
    assert "httponly" in set_cookie
    assert "secure" in set_cookie
    assert "samesite=strict" in set_cookie


def test_csrf_endpoint_rejects_foreign_origin(client: TestClient) -> None:
    response = client.get("/api/csrf", headers={"X-App-Origin": "https://evil.test"})

    assert response.status_code == 403


def test_csrf_endpoint_keeps_existing_session(client: TestClient) -> None:
    session_id, _ = _session(client)

    response = client.get(
        "/api/csrf",
        headers={"X-App-Origin": APP_ORIGIN, "Cookie": f"sessionId={session_id}"},
    )

    assert response.cookies["sessionId"] == session_id


def test_token_of_session_a_is_rejected_with_cookie_of_session_b(app: FastAPI) -> None:
    with TestClient(app, base_url="https://testserver") as tab_a, TestClient(
        app, base_url="https://testserver"
    ) as tab_b:
        _, token_a = _session(tab_a)
        session_b, _ = _session(tab_b)

        response = _action(tab_b, session_b, token_a, {"action": "create"})

    assert response.status_code == 403
    assert response.json()["reason"] == "csrf"


def test_full_game_flow(
    client: TestClient,
    player: LocalAccount,
    signature_cookie: str,
    clock: FakeClock,
    fake_ledger: FakeLedgerClient,
) -> None:
    session_id, token = _session(client)

    created = _action(client, session_id, token, {"action": "create-game"})
    assert created.status_code == 200
    assert created.json()["status"] == "success"
    game_id = max(fake_ledger.games)

    started = _action(
        client,
        session_id,
        token,
        {
            "action": "start-game",
            "gameId": game_id,
            "address": player.address,
            "recaptchaTokenStart": "captcha-token",
        },
        game_sig=signature_cookie,
    )
    assert started.status_code == 200, started.json()

    clock.advance(15)
    ended = _action(
        client,
        session_id,
        token,
        {"action": "end-game", "gameId": game_id, "address": player.address, "score": 150, "game": "fly"},
    )

    assert ended.status_code == 200
    assert ended.json() == {
        "status": "success",
        "txHash": ended.json()["txHash"],
        "isHighScore": True,
        "highScore": 150,
    }
    assert fake_ledger.calls_to(LedgerFunction.END_GAME) == [(game_id, player.address, 150)]


def test_start_with_foreign_signature_is_forbidden(
    client: TestClient, other_player: LocalAccount, signature_cookie: str
) -> None:
    session_id, token = _session(client)

    response = _action(
        client,
        session_id,
        token,
        {"action": "start", "gameId": 1, "address": other_player.address, "recaptchaToken": "t"},
        game_sig=signature_cookie,
    )

    assert response.status_code == 403
    assert response.json()["message"] == "Cookie Signature does not match player address"


def test_throttled_action_carries_retry_after(client: TestClient) -> None:
    session_id, token = _session(client)

    assert _action(client, session_id, token, {"action": "create"}).status_code == 200
    throttled = _action(client, session_id, token, {"action": "create"})

    assert throttled.status_code == 429
    assert int(throttled.headers["retry-after"]) > 0
    assert throttled.json()["retryAfter"] == int(throttled.headers["retry-after"])


def test_malformed_body_is_bad_request(client: TestClient) -> None:
    session_id, token = _session(client)

    response = _action(client, session_id, token, {"action": "end", "gameId": "first"})

    assert response.status_code == 400
    assert response.json() == {"status": "error", "message": "Invalid request", "reason": "bad_request"}


def test_oversized_telemetry_is_refused_before_evaluation(
    client: TestClient, fake_ledger: FakeLedgerClient
) -> None:
    session_id, token = _session(client)
    padding = [
        {"event": "frame", "time": index, "frameId": index} for index in range(MAX_TELEMETRY_EVENTS + 1)
    ]

    response = _action(
        client,
        session_id,
        token,
        {"action": "end", "gameId": 1, "address": ZERO_ADDRESS, "score": 50_000, "telemetry": padding},
    )

    assert response.status_code == 400
    assert response.json()["reason"] == "bad_request"
    assert fake_ledger.calls == []


def test_game_reads(client: TestClient, fake_ledger: FakeLedgerClient, player: LocalAccount) -> None:
    fake_ledger.add_game(2, high_score=77, pot=5)
    fake_ledger.tickets[player.address.lower()] = 4

    latest = client.get("/api/games/latest")
    game = client.get("/api/games/2")
    tickets = client.get(f"/api/tickets/{player.address.lower()}")

    assert latest.json() == {"gameId": 2}
    assert game.json()["highScore"] == 77
    assert game.json()["potHistory"] == []
    assert tickets.json() == {"address": player.address, "tickets": 4}


def test_ticket_read_rejects_invalid_address(client: TestClient) -> None:
    assert client.get("/api/tickets/not-an-address").status_code == 400


def test_ledger_outage_on_reads_is_bad_gateway(client: TestClient, fake_ledger: FakeLedgerClient) -> None:
    fake_ledger.read_error = ConnectionError("rpc down")

    assert client.get("/api/games/1").status_code == 502


def test_public_config_hides_secrets(client: TestClient, services: ServiceContainer) -> None:
    response = client.get("/api/system/config")

    assert response.status_code == 200
    body = response.json()
    assert body["rate_limits"] == {"create": 1500, "start": 0, "end": 30}
    assert body["plausibility"]["games"]["shoot"]["points_per_kill"] == 31
    assert body["store"]["backend"] == "memory"
    assert body["ledger"]["ticket_price_wei"] == 10**14
    assert body["ledger"]["pot_history"] is False
    assert "test-secret" not in response.text


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
