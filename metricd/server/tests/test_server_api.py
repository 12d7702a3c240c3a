"""
metricd - Server API Tests

Pytest tests for the collector HTTP surface.
"""

import gzip
import json

import pytest
from fastapi.testclient import TestClient

from metricd.config import ServerSettings
from metricd.lib.signature import SIGNATURE_HEADER, sign
from metricd.storage import MemoryStorage


def make_settings(tmp_path, **overrides):
    values = {
        "store_interval": 300,
        "store_file": str(tmp_path / "backup.json"),
        "restore": False,
        "database_dsn": "",
        "key": "",
    }
    values.update(overrides)
    return ServerSettings(**values)


@pytest.fixture
def client(tmp_path):
    """Create test client."""
    from metricd.server.main import create_app

    app = create_app(make_settings(tmp_path), store=MemoryStorage())
    with TestClient(app) as test_client:
        yield test_client


class TestTextUpdates:
    """Test /update/{type}/{name}/{value}."""

    def test_gauge_update(self, client):
        response = client.post("/update/gauge/Alloc/100.5")
        assert response.status_code == 200
        assert response.text == "OK"

        client.post("/update/gauge/Alloc/42.0")
        assert client.get("/value/gauge/Alloc").text == "42"

    def test_counter_update(self, client):
        for _ in range(5):
            client.post("/update/counter/PollCount/1")

        assert client.get("/value/counter/PollCount").text == "5"

    def test_unknown_type(self, client):
        assert client.post("/update/histogram/x/1").status_code == 400

    def test_bad_value(self, client):
        assert client.post("/update/gauge/x/abc").status_code == 400
        assert client.post("/update/counter/x/1.5").status_code == 400


class TestJsonUpdates:
    """Test /update/ and /updates/."""

    def test_batch_then_read(self, client):
        response = client.post(
            "/updates/",
            json=[
                {"id": "a", "type": "gauge", "value": 1.5},
                {"id": "b", "type": "counter", "delta": 3},
            ],
        )
        assert response.status_code == 200
        assert response.json() == [
            {"id": "a", "type": "gauge", "value": 1.5},
            {"id": "b", "type": "counter", "delta": 3},
        ]

        assert client.get("/value/counter/b").text == "3"
        assert client.get("/value/gauge/a").text == "1.5"

    def test_invalid_batch_writes_nothing(self, client):
        response = client.post(
            "/updates/",
            json=[
                {"id": "a", "type": "gauge", "value": 1.5},
                {"id": "b", "type": "counter"},
            ],
        )
        assert response.status_code == 400
        assert client.get("/value/gauge/a").status_code == 404

    def test_unknown_type_in_batch(self, client):
        response = client.post("/updates/", json=[{"id": "a", "type": "histogram", "value": 1}])
        assert response.status_code == 400

    def test_counter_returns_total(self, client):
        client.post("/update/", json={"id": "c", "type": "counter", "delta": 2})
        response = client.post("/update/", json={"id": "c", "type": "counter", "delta": 2})

        assert response.status_code == 200
        assert response.json() == {"id": "c", "type": "counter", "delta": 4}

    def test_gauge_echoed(self, client):
        response = client.post("/update/", json={"id": "g", "type": "gauge", "value": 0.5})
        assert response.json() == {"id": "g", "type": "gauge", "value": 0.5}

    def test_counter_overflow_rejected(self, client):
        client.post("/update/", json={"id": "c", "type": "counter", "delta": 2 ** 62})
        response = client.post("/update/", json={"id": "c", "type": "counter", "delta": 2 ** 62})

        assert response.status_code == 400
        assert client.get("/value/counter/c").text == str(2 ** 62)

    def test_counter_overflow_in_batch_writes_nothing(self, client):
        client.post("/update/counter/c/9223372036854775806")
        response = client.post("/updates/", json=[
            {"id": "a", "type": "gauge", "value": 1},
            {"id": "c", "type": "counter", "delta": 2},
        ])

        assert response.status_code == 400
        assert client.get("/value/gauge/a").status_code == 404
        assert client.get("/value/counter/c").text == "9223372036854775806"


class TestReads:
    """Test read-back endpoints."""

    def test_missing_value(self, client):
        assert client.get("/value/gauge/nope").status_code == 404

    def test_unknown_type(self, client):
        assert client.get("/value/histogram/x").status_code == 400

    def test_value_json(self, client):
        client.post("/update/gauge/a/1.5")
        client.post("/update/counter/b/7")

        assert client.post("/value/", json={"id": "a", "type": "gauge"}).json() == {
            "id": "a", "type": "gauge", "value": 1.5,
        }
        assert client.post("/value/", json={"id": "b", "type": "counter"}).json() == {
            "id": "b", "type": "counter", "delta": 7,
        }
        assert client.post("/value/", json={"id": "c", "type": "counter"}).status_code == 404

    def test_home_lists_metrics(self, client):
        client.post("/update/gauge/Alloc/1.5")
        client.post("/update/counter/PollCount/2")

        response = client.get("/")
        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "Alloc: 1.5" in response.text
        assert "PollCount: 2" in response.text

    def test_ping(self, client):
        assert client.get("/ping").status_code == 200


class TestCompression:
    """Gzip request and response framing."""

    def test_gzip_request(self, client):
        body = json.dumps([{"id": "z", "type": "counter", "delta": 9}]).encode()
        response = client.post(
            "/updates/",
            content=gzip.compress(body),
            headers={"Content-Encoding": "gzip", "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert client.get("/value/counter/z").text == "9"

    def test_bad_gzip_rejected(self, client):
        response = client.post(
            "/updates/",
            content=b"not gzip",
            headers={"Content-Encoding": "gzip", "Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_response_compressed(self, client):
        response = client.get("/", headers={"Accept-Encoding": "gzip"})
        assert response.headers.get("content-encoding") == "gzip"


class TestSignature:
    """HMAC signing with a configured key."""

    @pytest.fixture
    def signed_client(self, tmp_path):
        from metricd.server.main import create_app

        app = create_app(make_settings(tmp_path, key="secret"), store=MemoryStorage())
        with TestClient(app) as test_client:
            yield test_client

    def test_valid_signature(self, signed_client):
        body = json.dumps([{"id": "a", "type": "gauge", "value": 2}]).encode()
        response = signed_client.post(
            "/updates/",
            content=body,
            headers={"Content-Type": "application/json", SIGNATURE_HEADER: sign("secret", body)},
        )

        assert response.status_code == 200
        assert response.headers[SIGNATURE_HEADER] == sign("secret", response.content)

    def test_signature_mismatch(self, signed_client):
        body = json.dumps([{"id": "a", "type": "gauge", "value": 2}]).encode()
        response = signed_client.post(
            "/updates/",
            content=body,
            headers={"Content-Type": "application/json", SIGNATURE_HEADER: sign("wrong", body)},
        )

        assert response.status_code == 400
        assert signed_client.get("/value/gauge/a").status_code == 404

    def test_malformed_signature(self, signed_client):
        response = signed_client.post(
            "/update/gauge/a/2",
            headers={SIGNATURE_HEADER: "not-hex"},
        )

        assert response.status_code == 400
        assert response.text == "signature mismatch"

    def test_signature_over_decompressed_body(self, signed_client):
        body = json.dumps([{"id": "a", "type": "gauge", "value": 2}]).encode()
        response = signed_client.post(
            "/updates/",
            content=gzip.compress(body),
            headers={
                "Content-Type": "application/json",
                "Content-Encoding": "gzip",
                SIGNATURE_HEADER: sign("secret", body),
            },
        )

        assert response.status_code == 200


class TestBackupIntegration:
    """Backup wiring in the application lifespan."""

    def test_sync_mode_writes_every_update(self, tmp_path):
        from metricd.server.main import create_app

        settings = make_settings(tmp_path, store_interval=0)
        with TestClient(create_app(settings, store=MemoryStorage())) as client:
            client.post("/update/gauge/a/1.5")
            saved = json.loads((tmp_path / "backup.json").read_text())

        assert saved == [{"id": "a", "type": "gauge", "value": 1.5}]

    def test_shutdown_writes_backup(self, tmp_path):
        from metricd.server.main import create_app

        with TestClient(create_app(make_settings(tmp_path), store=MemoryStorage())) as client:
            client.post("/update/counter/c/3")
            assert not (tmp_path / "backup.json").exists()

        saved = json.loads((tmp_path / "backup.json").read_text())
        assert saved == [{"id": "c", "type": "counter", "delta": 3}]

    def test_restore_on_start(self, tmp_path):
        from metricd.server.main import create_app

        (tmp_path / "backup.json").write_text(json.dumps([
            {"id": "a", "type": "gauge", "value": 4.5},
            {"id": "c", "type": "counter", "delta": 10},
        ]))

        settings = make_settings(tmp_path, restore=True)
        with TestClient(create_app(settings, store=MemoryStorage())) as client:
            assert client.get("/value/gauge/a").text == "4.5"
            client.post("/update/counter/c/1")
            assert client.get("/value/counter/c").text == "11"

    def test_sql_backend(self, tmp_path):
        from metricd.server.main import create_app

        settings = make_settings(tmp_path, database_dsn=str(tmp_path / "metrics.db"))
        with TestClient(create_app(settings)) as client:
            client.post("/update/counter/c/3")
            client.post("/update/counter/c/4")
            assert client.get("/value/counter/c").text == "7"

    def test_restart_with_sql_backend_keeps_counters(self, tmp_path):
        from metricd.server.main import create_app

        settings = make_settings(tmp_path, restore=True, database_dsn=str(tmp_path / "metrics.db"))
        with TestClient(create_app(settings)) as client:
            for _ in range(5):
                client.post("/update/counter/c/1")
            client.post("/update/gauge/g/2.5")

        with TestClient(create_app(settings)) as client:
            assert client.get("/value/counter/c").text == "5"
            assert client.get("/value/gauge/g").text == "2.5"
            client.post("/update/counter/c/1")

        with TestClient(create_app(settings)) as client:
            assert client.get("/value/counter/c").text == "6"
