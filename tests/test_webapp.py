from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient

from kidpots.i18n import Translator
from kidpots.webapp import create_app

OWNER_HEADERS = {"X-Owner-Id": "parent-1"}


@pytest.fixture()
def client(bank):
    with TestClient(create_app(bank, translator=Translator("en"))) as test_client:
        yield test_client


@pytest.fixture()
def child_id(client) -> int:
    response = client.post("/children", json={"name": "Mia", "age": 8}, headers=OWNER_HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


def test_owner_header_is_required(client) -> None:
    assert client.get("/children").status_code == 401
    assert client.get("/children", headers=OWNER_HEADERS).json() == []


def test_payout_and_balance(client, child_id) -> None:
    response = client.post(
        f"/children/{child_id}/payouts",
        json={"occurred_on": "2024-03-01", "slices": {"spend": 400, "save": 400, "invest": 200}},
        headers=OWNER_HEADERS,
    )
    assert response.status_code == 201
    body = response.json()
    assert len(body["transaction_ids"]) == 4
    assert body["balance"]["save"] == {"cents": 400, "display": "CHF 4.00"}

    balance = client.get(f"/children/{child_id}/balance", headers=OWNER_HEADERS).json()
    assert balance["total"]["cents"] == 1000
    assert balance["version"] == 1

    rows = client.get(f"/children/{child_id}/transactions", headers=OWNER_HEADERS).json()
    assert len(rows) == 4
    assert client.get(f"/children/{child_id}/verify", headers=OWNER_HEADERS).json() == {
        "consistent": True,
        "mismatches": {},
    }


def test_payout_from_percentages(client, child_id) -> None:
    response = client.post(
        f"/children/{child_id}/payouts",
        json={"total": 1001, "percentages": {"spend": 40, "save": 40, "invest": 20}},
        headers=OWNER_HEADERS,
    )
    assert response.status_code == 201
    assert response.json()["deltas"] == {"spend": 401, "save": 400, "invest": 200}


def test_errors_are_translated(client, child_id) -> None:
    response = client.post(
        f"/children/{child_id}/payouts",
        json={"total": 1000, "slices": {"spend": 500, "save": 400}},
        headers=OWNER_HEADERS,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "slice_mismatch"
    assert response.json()["message"] == "The allocation must equal the total."

    german = client.post(
        f"/children/{child_id}/expenses",
        json={"pot": "spend", "amount": "5.00"},
        headers={**OWNER_HEADERS, "Accept-Language": "de-CH,de;q=0.9"},
    )
    assert german.status_code == 409
    assert german.json()["message"] == "Nicht genug Geld in diesem Topf."


def test_unknown_child_is_404(client) -> None:
    response = client.get("/children/999/balance", headers=OWNER_HEADERS)
    assert response.status_code == 404
    assert response.json()["error"] == "child_not_found"


def test_other_owner_cannot_see_child(client, child_id) -> None:
    response = client.get(f"/children/{child_id}", headers={"X-Owner-Id": "intruder"})
    assert response.status_code == 404


def test_invest_gate_over_http(client, child_id) -> None:
    client.post(
        f"/children/{child_id}/payouts",
        json={"slices": {"invest": 4000, "save": 1000}},
        headers=OWNER_HEADERS,
    )
    denied = client.post(
        f"/children/{child_id}/invest-transfers", json={"amount_cents": 1000}, headers=OWNER_HEADERS
    )
    assert denied.status_code == 409
    assert denied.json()["error"] == "below_threshold"

    client.patch(
        f"/children/{child_id}/settings", json={"invest_threshold_cents": 4000}, headers=OWNER_HEADERS
    )
    detail = client.get(f"/children/{child_id}", headers=OWNER_HEADERS).json()
    assert detail["can_transfer_invest"] is True
    assert detail["settings"]["invest_threshold_cents"] == 4000

    allowed = client.post(
        f"/children/{child_id}/invest-transfers", json={"amount": "10"}, headers=OWNER_HEADERS
    )
    assert allowed.status_code == 201
    assert allowed.json()["balance"]["invest"]["cents"] == 3000


def test_interest_endpoint_reports_status(client, bank, clock) -> None:
    child_id = bank.create_child("parent-1", "Ava", created_at=datetime(2024, 1, 1, 7, 0)).id
    client.post(f"/children/{child_id}/payouts", json={"slices": {"save": 10_000}}, headers=OWNER_HEADERS)
    clock.today = date(2024, 2, 6)

    first = client.post(f"/children/{child_id}/interest", headers=OWNER_HEADERS).json()
    second = client.post(f"/children/{child_id}/interest", headers=OWNER_HEADERS).json()
    assert first["status"] == "posted"
    assert first["interest"]["cents"] == 19
    assert first["message"] == "Interest credited."
    assert second["status"] == "nothing_due"


def test_wish_flow(client, child_id) -> None:
    client.post(f"/children/{child_id}/payouts", json={"slices": {"save": 2500}}, headers=OWNER_HEADERS)
    wish = client.post(
        f"/children/{child_id}/wishes", json={"title": "Skates", "amount": "50.00"}, headers=OWNER_HEADERS
    ).json()
    assert wish["progress"] == 0.5
    assert wish["affordable"] is False

    blocked = client.post(f"/children/{child_id}/wishes/{wish['id']}/redeem", headers=OWNER_HEADERS)
    assert blocked.status_code == 409

    client.post(f"/children/{child_id}/payouts", json={"slices": {"save": 2500}}, headers=OWNER_HEADERS)
    redeemed = client.post(f"/children/{child_id}/wishes/{wish['id']}/redeem", headers=OWNER_HEADERS)
    assert redeemed.status_code == 201
    assert redeemed.json()["balance"]["save"]["cents"] == 0

    wishes = client.get(f"/children/{child_id}/wishes", headers=OWNER_HEADERS).json()
    assert wishes[0]["redeemed_on"] == date(2024, 3, 1).isoformat()
    again = client.post(f"/children/{child_id}/wishes/{wish['id']}/redeem", headers=OWNER_HEADERS)
    assert again.json()["error"] == "wish_redeemed"


def test_stats_endpoints(client, child_id) -> None:
    client.post(
        f"/children/{child_id}/payouts",
        json={"occurred_on": "2024-03-01", "slices": {"spend": 300, "save": 700}},
        headers=OWNER_HEADERS,
    )
    month = client.get(f"/children/{child_id}/stats/month", headers=OWNER_HEADERS).json()
    assert month["allocations"]["save"] == 700
    assert month["income_cents"] == 1000

    trend = client.get(f"/children/{child_id}/stats/save-trend?months=2", headers=OWNER_HEADERS).json()
    assert trend == [{"month": "2024-02", "cents": 0}, {"month": "2024-03", "cents": 700}]

    year = client.get(f"/children/{child_id}/stats/year/2024", headers=OWNER_HEADERS).json()
    assert year["deposit"] == 1000


def test_bank_is_opened_once_at_startup(monkeypatch, bank) -> None:
    opened = []

    def open_test_bank():
        opened.append(bank)
        return bank

    monkeypatch.setattr("kidpots.webapp.open_bank", open_test_bank)
    application = create_app(translator=Translator("en"))
    assert application.state.bank is None

    with TestClient(application) as test_client:
        assert application.state.bank is bank
        assert test_client.get("/children", headers=OWNER_HEADERS).status_code == 200
        assert test_client.get("/children", headers=OWNER_HEADERS).status_code == 200

    assert opened == [bank]
    assert application.state.bank is None


def test_requests_before_startup_are_unavailable() -> None:
    test_client = TestClient(create_app(translator=Translator("en")))
    response = test_client.get("/children", headers=OWNER_HEADERS)
    assert response.status_code == 503
    assert response.json()["error"] == "persistence"
