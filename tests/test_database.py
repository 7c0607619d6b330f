import pytest
from fastapi.testclient import TestClient

import database
from errors import InternalError
from main import app


def test_get_db_without_configuration(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    with pytest.raises(InternalError):
        database.get_db()


def test_routes_report_missing_database(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    res = TestClient(app).get("/products")
    assert res.status_code == 500
    assert res.json() == {"detail": "Database not available"}


def test_ensure_indexes(db):
    database.ensure_indexes(db)
    assert "order_id_1" in db["order"].index_information()
    assert db["cart"].index_information()["user_id_1"]["unique"] is True


def test_serialize_doc_exposes_id(db):
    inserted = db["thing"].insert_one({"name": "x"}).inserted_id
    doc = database.serialize_doc(db["thing"].find_one({"_id": inserted}))
    assert doc == {"id": str(inserted), "name": "x"}


def test_startup_creates_indexes(db, monkeypatch):
    monkeypatch.setattr(database, "db", db)
    with TestClient(app):
        pass
    assert "order_id_1" in db["order"].index_information()
    assert db["user"].index_information()["email_1"]["unique"] is True


class TestHealthRoute:
    def test_reports_connected_database(self, db, monkeypatch):
        db["product"].insert_one({"title": "x"})
        monkeypatch.setattr(database, "db", db)

        body = TestClient(app).get("/test").json()

        assert body["backend"] == "✅ Running"
        assert body["database"] == "✅ Available"
        assert body["connection_status"] == "Connected"
        assert body["database_name"] == db.name
        assert "product" in body["collections"]

    def test_reports_missing_database(self, monkeypatch):
        monkeypatch.setattr(database, "db", None)

        res = TestClient(app).get("/test")

        assert res.status_code == 200
        assert res.json()["database"] == "❌ Not Available"
        assert res.json()["connection_status"] == "Not Connected"
        assert res.json()["collections"] == []
