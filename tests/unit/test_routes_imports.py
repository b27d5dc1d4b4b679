"""
API tests for /api/imports.

Routes run against the fake-backed ImportService from conftest.py.
"""

import pytest

from tests.factories import CatalogFactory


@pytest.fixture
def client(test_client_with_mock_db):
    return test_client_with_mock_db


@pytest.fixture
def headers(merchant_id, user_id):
    return {"X-Merchant-Id": merchant_id, "X-User-Id": user_id}


def upload_csv(client, headers, content, filename="catalog.csv"):
    return client.post(
        "/api/imports/upload",
        files={"file": (filename, content, "text/csv")},
        headers=headers,
    )


@pytest.fixture
def session_id(client, headers, sample_csv):
    response = upload_csv(client, headers, sample_csv)
    assert response.status_code == 201
    return response.json()["session_id"]


class TestUpload:

    def test_upload(self, client, headers, sample_csv):
        response = upload_csv(client, headers, sample_csv)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "parsed"
        assert body["file_format"] == "csv"
        assert body["total_rows"] == 3
        assert body["analysis_result"]["detected_columns"] == ["sku", "name", "price"]

    def test_upload_with_delimiter(self, client, headers):
        response = client.post(
            "/api/imports/upload",
            files={"file": ("catalog.csv", b"sku|name\nA1|Widget\n", "text/csv")},
            data={"delimiter": "|"},
            headers=headers,
        )

        assert response.status_code == 201
        assert response.json()["total_rows"] == 1

    def test_unsupported_format(self, client, headers):
        response = upload_csv(client, headers, b"%PDF-1.4", filename="catalog.pdf")

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "UNSUPPORTED_FORMAT"
        assert "session_id" in error["details"]

    def test_missing_identity_headers(self, client, sample_csv):
        response = upload_csv(client, {}, sample_csv)

        assert response.status_code == 422


class TestSessionReads:

    def test_get_session(self, client, headers, session_id):
        response = client.get(f"/api/imports/{session_id}", headers=headers)

        assert response.status_code == 200
        assert response.json()["id"] == session_id

    def test_get_session_of_other_merchant(self, client, session_id):
        response = client.get(
            f"/api/imports/{session_id}",
            headers={"X-Merchant-Id": "merchant-2"},
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "IMPORT_SESSION_NOT_FOUND"

    def test_list_sessions(self, client, headers, session_id):
        response = client.get("/api/imports", headers=headers)

        body = response.json()
        assert response.status_code == 200
        assert body["total"] == 1
        assert body["data"][0]["id"] == session_id

    def test_items_paginated(self, client, headers, session_id):
        response = client.get(
            f"/api/imports/{session_id}/items",
            params={"page": 1, "page_size": 2},
            headers=headers,
        )

        body = response.json()
        assert body["total"] == 3
        assert body["total_pages"] == 2
        assert [item["row_number"] for item in body["data"]] == [1, 2]


class TestPipeline:

    def test_full_import(self, client, headers, session_id, mock_db, merchant_id):
        seed = CatalogFactory.create_rows(merchant_id, title="Widget", sku="A1", base_price_minor=999)
        mock_db.set_table_data("products", [seed[0]])
        mock_db.set_table_data("product_variants", [seed[1]])

        response = client.post(f"/api/imports/{session_id}/analyze", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "analyzed"

        response = client.post(f"/api/imports/{session_id}/match", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "reconciling"

        stats = client.get(f"/api/imports/{session_id}/stats", headers=headers).json()
        assert stats == {"total": 3, "matched": 1, "new": 1, "conflicts": 0, "errors": 0, "pending": 1}

        response = client.post(f"/api/imports/{session_id}/approve-all", headers=headers)
        assert response.json() == {"approved": 2}

        response = client.post(f"/api/imports/{session_id}/execute", headers=headers)
        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "completed"
        assert body["new_count"] == 1
        assert body["update_count"] == 1
        assert body["success_count"] == 2

    def test_state_conflict_is_409(self, client, headers, session_id):
        response = client.post(f"/api/imports/{session_id}/match", headers=headers)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

    def test_update_mapping(self, client, headers, session_id):
        client.post(f"/api/imports/{session_id}/analyze", headers=headers)

        response = client.patch(
            f"/api/imports/{session_id}/mapping",
            json={"column_mapping": [
                {"source_column": "name", "target_field": "product.title", "confidence": 1.0},
            ]},
            headers=headers,
        )

        assert response.status_code == 200
        assert len(response.json()["analysis_result"]["column_mapping"]) == 1

    def test_update_and_resolve_item(self, client, headers, session_id):
        client.post(f"/api/imports/{session_id}/analyze", headers=headers)
        items = client.get(f"/api/imports/{session_id}/items", headers=headers).json()["data"]

        response = client.patch(
            f"/api/imports/{session_id}/items/{items[0]['id']}",
            json={"status": "approved"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = client.post(
            f"/api/imports/{session_id}/items/{items[1]['id']}/resolve",
            json={"action": "skip"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "rejected"

    def test_approving_invalid_item_is_422(self, client, headers, session_id):
        client.post(f"/api/imports/{session_id}/analyze", headers=headers)
        items = client.get(
            f"/api/imports/{session_id}/items", params={"status": "pending"}, headers=headers
        ).json()["data"]

        response = client.patch(
            f"/api/imports/{session_id}/items/{items[0]['id']}",
            json={"status": "approved"},
            headers=headers,
        )

        assert response.status_code == 422

    def test_cancel(self, client, headers, session_id):
        response = client.post(f"/api/imports/{session_id}/cancel", headers=headers)
        assert response.json()["status"] == "cancelled"

        response = client.post(f"/api/imports/{session_id}/cancel", headers=headers)
        assert response.status_code == 409
