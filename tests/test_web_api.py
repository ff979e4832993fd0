"""Tests for the Flask API."""

from __future__ import annotations

import base64
import io

import pytest

from sdcvault.core.sdc import MAGIC_BYTES
from sdcvault.db import MemoryStore
from web.backend.app import create_app

PASSWORD = "api-password-1"


@pytest.fixture
def app(config, audit, clock):
    return create_app(config, store=MemoryStore(), audit=audit, clock=clock)


@pytest.fixture
def client(app):
    return app.test_client()


def upload(client, content=b"hello world", filename="note.txt", **form):
    data = {"file": (io.BytesIO(content), filename)}
    data.update(form)
    return client.post("/api/sdc", data=data, content_type="multipart/form-data")


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"
    assert response.get_json()["offline_mode"] is True
    assert response.headers["Access-Control-Allow-Origin"] == "*"


class TestSdcRoutes:
    def test_create(self, client):
        response = upload(client, password=PASSWORD, max_views="2", tags="a, b")

        assert response.status_code == 201
        body = response.get_json()
        assert body["private_key"]
        assert body["file"]["name"] == "note.sdc"
        assert body["file"]["original_format"] == "txt"
        assert body["file"]["metadata"]["access"]["maxViews"] == 2
        assert body["file"]["metadata"]["tags"] == ["a", "b"]

    def test_create_without_file(self, client):
        response = client.post("/api/sdc", data={}, content_type="multipart/form-data")
        assert response.status_code == 400

    def test_create_invalid_max_views(self, client):
        assert upload(client, max_views="0").status_code == 400

    def test_read_and_exhaust(self, client):
        file_id = upload(client, password=PASSWORD, max_views="1").get_json()["file"]["id"]

        first = client.post(f"/api/sdc/{file_id}/read", json={"password": PASSWORD})
        second = client.post(f"/api/sdc/{file_id}/read", json={"password": PASSWORD})

        assert first.status_code == 200
        assert base64.b64decode(first.get_json()["data"]) == b"hello world"
        assert first.get_json()["views_remaining"] == 0
        assert second.status_code == 403
        assert second.get_json()["error"] == "Maximum view count exceeded"

    def test_read_with_private_key(self, client):
        body = upload(client).get_json()
        response = client.post(f"/api/sdc/{body['file']['id']}/read", json={"private_key": body["private_key"]})
        assert response.status_code == 200

    def test_wrong_password(self, client):
        file_id = upload(client, password=PASSWORD).get_json()["file"]["id"]

        response = client.post(f"/api/sdc/{file_id}/read", json={"password": "nope"})

        assert response.status_code == 401
        assert response.get_json() == {"error": "Failed to decrypt file"}

    def test_read_rejects_non_string_password(self, client):
        file_id = upload(client, password=PASSWORD).get_json()["file"]["id"]

        response = client.post(f"/api/sdc/{file_id}/read", json={"password": 1234})

        assert response.status_code == 400
        assert response.get_json() == {"error": "password must be a string"}

    def test_unknown_file(self, client):
        assert client.get("/api/sdc/missing").status_code == 404
        assert client.post("/api/sdc/missing/read", json={}).status_code == 404

    def test_get_and_update_metadata(self, client):
        file_id = upload(client).get_json()["file"]["id"]

        response = client.put(f"/api/sdc/{file_id}/metadata", json={"title": "Renamed", "tags": ["x"]})

        assert response.status_code == 200
        fetched = client.get(f"/api/sdc/{file_id}").get_json()["file"]
        assert fetched["metadata"]["title"] == "Renamed"
        assert fetched["metadata"]["tags"] == ["x"]

    def test_export_and_import(self, client):
        file_id = upload(client).get_json()["file"]["id"]

        exported = client.get(f"/api/sdc/{file_id}/export")
        assert exported.status_code == 200
        assert exported.data[:4] == MAGIC_BYTES

        imported = client.post("/api/sdc/import", data=exported.data, content_type="application/octet-stream")
        assert imported.status_code == 201
        assert imported.get_json()["file"]["id"] == file_id

    def test_import_garbage(self, client):
        response = client.post("/api/sdc/import", data=b"garbage", content_type="application/octet-stream")
        assert response.status_code == 400
        assert response.get_json()["error"] == "Data too short for an SDC file"

    def test_qr(self, client):
        file_id = upload(client).get_json()["file"]["id"]

        response = client.get(f"/api/sdc/{file_id}/qr?base_url=https://vault.example")
        body = response.get_json()

        assert response.status_code == 200
        assert "<svg" in body["svg"]
        assert body["descriptor"]["accessUrl"].startswith("https://vault.example/sdc-reader?")

        parsed = client.post("/api/qr/parse", json={"data": body["payload"]}).get_json()
        assert parsed["valid"]
        assert parsed["data"]["fileId"] == file_id

    def test_qr_parse_rejects_garbage(self, client):
        parsed = client.post("/api/qr/parse", json={"data": "hello"}).get_json()
        assert parsed == {"valid": False, "data": None, "error": "Invalid QR code data format"}


class TestSignatureRoutes:
    @pytest.fixture
    def certificate(self, client):
        response = client.post(
            "/api/certificates",
            json={"subject": {"common_name": "Alice", "email": "alice@example.com"}},
        )
        assert response.status_code == 201
        return response.get_json()

    @pytest.fixture
    def signed(self, client, certificate):
        response = client.post(
            "/api/signatures",
            json={
                "document_id": "contract-7",
                "data": b64(b"contract text"),
                "signer": {
                    "name": "Alice",
                    "email": "alice@example.com",
                    "certificate": certificate["certificate"],
                    "private_key": certificate["private_key"],
                },
            },
        )
        assert response.status_code == 201
        return response.get_json()["signature"]

    def test_certificate_requires_subject(self, client):
        assert client.post("/api/certificates", json={}).status_code == 400

    def test_certificate_fields(self, certificate):
        assert len(certificate["fingerprint"]) == 64
        assert certificate["valid_to"]

    def test_verify(self, client, signed):
        response = client.post(f"/api/signatures/{signed['id']}/verify", json={"data": b64(b"contract text")})
        body = response.get_json()

        assert body["valid"] is True
        assert all(body["details"].values())

    def test_verify_tampered(self, client, signed):
        body = client.post(
            f"/api/signatures/{signed['id']}/verify", json={"data": b64(b"contract text!")}
        ).get_json()
        assert body["valid"] is False
        assert body["details"]["signatureValid"] is False

    def test_verify_requires_base64(self, client, signed):
        response = client.post(f"/api/signatures/{signed['id']}/verify", json={"data": "%%%"})
        assert response.status_code == 400

    def test_revoke(self, client, signed):
        revoked = client.post(f"/api/signatures/{signed['id']}/revoke", json={"reason": "superseded"})
        assert revoked.get_json()["signature"]["revocationReason"] == "superseded"

        body = client.post(
            f"/api/signatures/{signed['id']}/verify", json={"data": b64(b"contract text")}
        ).get_json()
        assert body["valid"] is False
        assert body["error"] == "Signature has been revoked"

    def test_sign_with_wrong_key(self, client, certificate):
        other = client.post("/api/certificates", json={"subject": {"common_name": "Bob"}}).get_json()
        response = client.post(
            "/api/signatures",
            json={
                "document_id": "contract-7",
                "data": b64(b"contract text"),
                "signer": {
                    "name": "Alice",
                    "email": "alice@example.com",
                    "certificate": certificate["certificate"],
                    "private_key": other["private_key"],
                },
            },
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "Private key does not match certificate"

    def test_document_listing_and_pdf(self, client, signed):
        listing = client.get("/api/documents/contract-7/signatures").get_json()
        assert [s["id"] for s in listing["signatures"]] == [signed["id"]]

        annotation = client.get(f"/api/signatures/{signed['id']}/pdf").get_json()
        assert annotation["signer"]["name"] == "Alice"

    def test_unknown_signature(self, client):
        assert client.post("/api/signatures/missing/revoke", json={}).status_code == 404
        assert client.get("/api/signatures/missing/pdf").status_code == 404
