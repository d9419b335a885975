"""Test contributor membership toggling and the portfolio endpoint."""
import pytest
from fastapi.testclient import TestClient

from sovrn.core.errors import NotFoundError, ValidationError
from sovrn.features.contributions.service import get_contribution, set_contribution, toggle_contribution
from sovrn.main import app

client = TestClient(app)


def test_new_user_is_not_contributing(add_dataset):
    add_dataset("D1")
    assert get_contribution("D1", "U1") == {"dataset_id": "D1", "user_id": "U1", "is_active": False, "weight": None}


def test_toggle_joins_then_leaves(add_dataset):
    add_dataset("D1")

    joined = toggle_contribution("D1", "U1")
    left = toggle_contribution("D1", "U1")
    rejoined = toggle_contribution("D1", "U1")

    assert joined["is_active"] is True
    assert joined["weight"] == 1
    assert left["is_active"] is False
    assert left["weight"] == 1
    assert rejoined["is_active"] is True


def test_leaving_keeps_custom_weight(add_dataset):
    add_dataset("D1")
    set_contribution("D1", "U1", active=True, weight=4)

    set_contribution("D1", "U1", active=False)
    result = set_contribution("D1", "U1", active=True)

    assert result["weight"] == 4


def test_leaving_without_membership_is_a_noop(add_dataset):
    add_dataset("D1")
    assert set_contribution("D1", "U1", active=False)["is_active"] is False
    assert get_contribution("D1", "U1")["weight"] is None


def test_non_positive_weight_is_rejected(add_dataset):
    add_dataset("D1")
    with pytest.raises(ValidationError):
        set_contribution("D1", "U1", active=True, weight=0)


def test_unknown_dataset_is_not_found():
    with pytest.raises(NotFoundError):
        toggle_contribution("missing", "U1")


def test_contribution_endpoints(add_dataset):
    add_dataset("D1")
    headers = {"X-User-Id": "U1"}

    assert client.get("/api/datasets/D1/contribution", headers=headers).json()["is_active"] is False

    resp = client.post("/api/datasets/D1/contribution", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"dataset_id": "D1", "user_id": "U1", "is_active": True, "weight": 1}

    assert client.get("/api/datasets/D1/contribution", headers=headers).json()["is_active"] is True


def test_contribution_endpoint_unknown_dataset():
    resp = client.post("/api/datasets/nope/contribution", headers={"X-User-Id": "U1"})
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_portfolio_endpoint_empty():
    resp = client.get("/api/portfolio", headers={"X-User-Id": "U1"})
    assert resp.status_code == 200
    assert resp.json() == {"user_id": "U1", "balance_cents": 0, "recent_shares": []}


def test_portfolio_endpoint_rejects_bad_limit():
    resp = client.get("/api/portfolio", headers={"X-User-Id": "U1"}, params={"limit": 0})
    assert resp.status_code == 422
