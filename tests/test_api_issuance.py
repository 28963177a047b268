"""Tests for issuance API endpoints."""

import pytest
from httpx import AsyncClient

from cardkeeper.models.card import CardType


@pytest.fixture
async def stocked(seed_inventory) -> None:
    await seed_inventory({CardType.WALMART: ["A", "B", "C"], CardType.TARGET: ["T1"]})


def batch(*numbers: str, card_type: str = "Walmart") -> dict:
    return {
        "issued_by": "sam",
        "items": [
            {"client_name": "Pat Doe", "card_type": card_type, "card_number": n}
            for n in numbers
        ],
    }


class TestRecordIssuance:
    async def test_records_batch(self, client: AsyncClient, stocked) -> None:
        response = await client.post("/issuance", json=batch("A", "b"))

        assert response.status_code == 201
        data = response.json()
        assert data["count"] == 2
        assert [i["card_number"] for i in data["issued"]] == ["A", "B"]
        assert data["issued"][0]["mode"] == "normal"

        available = await client.get("/inventory/walmart/available")
        assert available.json()["numbers"] == ["C"]

    async def test_conflict_returns_409(self, client: AsyncClient, stocked) -> None:
        """The later submission for the same card is rejected."""
        first = await client.post("/issuance", json=batch("C"))
        second = await client.post("/issuance", json=batch("c"))

        assert first.status_code == 201
        assert second.status_code == 409
        detail = second.json()["detail"]
        assert detail["kind"] == "already_taken"
        assert "Walmart #C" in detail["message"]

    async def test_unknown_card_returns_404(self, client: AsyncClient, stocked) -> None:
        response = await client.post("/issuance", json=batch("ZZ"))

        assert response.status_code == 404

    async def test_empty_batch_returns_400(self, client: AsyncClient) -> None:
        response = await client.post("/issuance", json={"issued_by": "sam", "items": []})

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "invalid_input"

    async def test_drop_off_mode(self, client: AsyncClient, stocked) -> None:
        payload = batch("T1", card_type="Target")
        payload["items"][0]["mode"] = "drop_off"

        response = await client.post("/issuance", json=payload)

        assert response.status_code == 201
        assert response.json()["issued"][0]["mode"] == "drop_off"


class TestIssuanceRecords:
    async def test_get_and_undo(self, client: AsyncClient, stocked) -> None:
        created = await client.post("/issuance", json=batch("A"))
        record_id = created.json()["issued"][0]["record_id"]

        fetched = await client.get(f"/issuance/{record_id}")
        undone = await client.post(f"/issuance/{record_id}/undo", json={"actor": "manager"})
        gone = await client.get(f"/issuance/{record_id}")

        assert fetched.status_code == 200
        assert fetched.json()["client_name"] == "Pat Doe"
        assert undone.status_code == 200
        assert gone.status_code == 404

        check = await client.get("/inventory/walmart/A/available")
        assert check.json()["available"] is True

    async def test_undo_missing_record(self, client: AsyncClient) -> None:
        response = await client.post("/issuance/999/undo", json={"actor": "manager"})

        assert response.status_code == 404
        assert response.json()["detail"]["kind"] == "not_found"
