"""
Tests for POST /analytics-drain.

Covers the signature contract, JSON handling, idempotent redelivery and
store failure reporting, with the store swapped for an in-memory upsert.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from analytics_drain.config import settings
from analytics_drain.stores import StoreError

from conftest import TEST_SECRET, InMemoryEventStore, hex_signature


def _body(events) -> bytes:
    return json.dumps(events).encode("utf-8")


def _digest(body: bytes) -> bytes:
    return hmac.new(TEST_SECRET.encode(), body, hashlib.sha1).digest()


class TestScenario:
    def test_single_event_lands_with_derived_path(self, post_signed, store: InMemoryEventStore) -> None:
        body = b'[{"id":"e1","timestamp":1700000000,"url":"https://x.com/a"}]'

        response = post_signed(body)

        assert response.status_code == 200
        assert response.json() == {"processed": 1}
        assert list(store.rows) == ["e1"]
        assert store.rows["e1"].path == "/a"
        assert store.rows["e1"].url == "https://x.com/a"


class TestSignature:
    @pytest.mark.parametrize(
        "encode",
        [
            lambda d: d.hex(),
            lambda d: f"sha1={d.hex()}",
            lambda d: base64.b64encode(d).decode(),
        ],
        ids=["hex", "prefixed-hex", "base64"],
    )
    def test_each_accepted_encoding_is_accepted(self, post_signed, store, encode) -> None:
        body = _body([{"id": "sig-ok", "timestamp": 1700000000}])

        response = post_signed(body, signature=encode(_digest(body)))

        assert response.status_code == 200
        assert "sig-ok" in store.rows

    @pytest.mark.parametrize(
        "encode",
        [
            lambda d: d.hex(),
            lambda d: f"sha1={d.hex()}",
            lambda d: base64.b64encode(d).decode(),
        ],
        ids=["hex", "prefixed-hex", "base64"],
    )
    def test_signature_over_other_bytes_is_rejected(self, post_signed, store, encode) -> None:
        body = _body([{"id": "forged", "timestamp": 1700000000}])
        reserialized = json.dumps(json.loads(body), indent=2).encode()

        response = post_signed(body, signature=encode(_digest(reserialized)))

        assert response.status_code == 403
        assert response.json()["code"] == "invalid_signature"
        assert store.rows == {}
        assert store.upsert_calls == 0

    def test_missing_signature_returns_401(self, client: TestClient, store) -> None:
        response = client.post("/analytics-drain", content=b"[]")

        assert response.status_code == 401
        assert response.json()["error"] == "Missing signature header"
        assert store.upsert_calls == 0

    def test_blank_signature_counts_as_missing(self, post_signed) -> None:
        response = post_signed(b"[]", signature="   ")

        assert response.status_code == 401

    def test_alternate_header_name_is_accepted(self, post_signed, store) -> None:
        body = _body([{"id": "alt", "timestamp": 1700000000}])

        response = post_signed(body, header="X-Signature")

        assert response.status_code == 200
        assert "alt" in store.rows

    def test_invalid_signature_is_logged(self, post_signed, caplog) -> None:
        with caplog.at_level("WARNING", logger="analytics_drain.dependencies"):
            response = post_signed(b"[]", signature="0" * 40)

        assert response.status_code == 403
        assert any("invalid signature" in r.getMessage() for r in caplog.records)
        assert all(TEST_SECRET not in r.getMessage() for r in caplog.records)

    def test_missing_secret_fails_closed(self, post_signed, store, monkeypatch) -> None:
        monkeypatch.setattr(settings, "analytics_drain_secret", "")
        body = _body([{"id": "e1", "timestamp": 1700000000}])

        response = post_signed(body)

        assert response.status_code == 500
        assert response.json() == {"error": "Server configuration error", "code": "server_misconfigured"}
        assert store.upsert_calls == 0

    def test_signature_checked_before_json_parsing(self, post_signed) -> None:
        response = post_signed(b"{not json", signature="sha1=" + "0" * 40)

        assert response.status_code == 403


class TestPayloadHandling:
    def test_malformed_json_returns_400(self, post_signed, store) -> None:
        response = post_signed(b"{not json")

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_json"
        assert store.upsert_calls == 0

    def test_deeply_nested_json_returns_400(self, post_signed, store) -> None:
        response = post_signed(b"[" * 100000 + b"]" * 100000)

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_json"
        assert store.upsert_calls == 0

    def test_no_event_list_is_zero_processed(self, post_signed, store) -> None:
        response = post_signed(b'{"hello": "world"}')

        assert response.status_code == 200
        assert response.json() == {"processed": 0}
        assert store.upsert_calls == 0

    def test_scalar_body_is_zero_processed(self, post_signed) -> None:
        response = post_signed(b"42")

        assert response.status_code == 200
        assert response.json() == {"processed": 0}

    def test_nested_wrapper_matches_bare_array(self, client, post_signed, store) -> None:
        events = [
            {"timestamp": 1700000000, "sessionId": "s1", "url": "https://x.com/a"},
            {"id": "e2", "occurredAt": "2023-11-14T22:13:20Z", "visitId": "v2"},
        ]

        post_signed(_body(events))
        bare = dict(store.rows)
        store.rows.clear()
        post_signed(_body({"data": {"events": events}}))

        assert store.rows == bare
        assert len(bare) == 2

    def test_records_without_timestamp_are_dropped_not_fatal(self, post_signed, store) -> None:
        events = [{"id": f"ok-{i}", "timestamp": 1700000000 + i} for i in range(7)]
        events += [{"id": f"bad-{i}", "timestamp": "not a date"} for i in range(2)]
        events += [{"id": "bad-none"}]

        response = post_signed(_body(events))

        assert response.status_code == 200
        assert response.json() == {"processed": 7}
        assert sorted(store.rows) == sorted(f"ok-{i}" for i in range(7))

    def test_in_batch_duplicates_collapse_to_last(self, post_signed, store) -> None:
        events = [
            {"id": "dup", "timestamp": 1700000000, "url": "https://x.com/old"},
            {"id": "dup", "timestamp": 1700000000, "url": "https://x.com/new"},
        ]

        response = post_signed(_body(events))

        assert response.json() == {"processed": 1}
        assert store.rows["dup"].path == "/new"


class TestIdempotency:
    def test_redelivery_does_not_add_rows(self, post_signed, store) -> None:
        body = _body(
            {
                "events": [
                    {"id": "e1", "timestamp": 1700000000},
                    {"timestamp": 1700000001, "sessionId": "s1", "url": "https://x.com/b"},
                ]
            }
        )

        first = post_signed(body)
        rows_after_first = len(store.rows)
        second = post_signed(body)

        assert first.json() == second.json() == {"processed": 2}
        assert rows_after_first == len(store.rows) == 2

    def test_redelivery_with_corrected_data_overwrites(self, post_signed, store) -> None:
        post_signed(_body([{"id": "e1", "timestamp": 1700000000, "location": {"city": "Paris"}}]))
        post_signed(_body([{"id": "e1", "timestamp": 1700000000, "location": {"city": "Lyon"}}]))

        assert len(store.rows) == 1
        assert store.rows["e1"].city == "Lyon"


class TestStoreFailure:
    def test_store_error_returns_500_with_details(self, post_signed, store) -> None:
        store.fail_with = StoreError('relation "vercel_analytics_events" does not exist')

        response = post_signed(_body([{"id": "e1", "timestamp": 1700000000}]))

        assert response.status_code == 500
        assert response.json() == {
            "error": "Failed to store events",
            "code": "store_failed",
            "details": 'relation "vercel_analytics_events" does not exist',
        }
        assert store.rows == {}

    def test_unexpected_error_hides_details(self, post_signed, store) -> None:
        store.fail_with = RuntimeError("password=hunter2")

        response = post_signed(_body([{"id": "e1", "timestamp": 1700000000}]))

        assert response.status_code == 500
        assert "details" not in response.json()
        assert "hunter2" not in response.text
