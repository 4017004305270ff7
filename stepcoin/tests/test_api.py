"""HTTP contract tests for the steps, wallet, tier, rate, streak and event routes."""


def _record(client, user_id="alice", day="2024-06-03", steps=10_000):
    return client.post("/v1/steps", json={"user_id": user_id, "date": day, "steps": steps})


def _redeem(client, key, user_id="alice", day="2024-06-03"):
    return client.post(
        "/v1/wallet/redeem",
        json={"user_id": user_id, "date": day},
        headers={"Idempotency-Key": key},
    )


class TestSteps:
    def test_record_steps_returns_summary(self, client):
        resp = _record(client)
        assert resp.status_code == 200
        body = resp.json()
        # Monday in June: rainy season only
        assert body["record"]["pendingUnits"] == 520
        assert body["quote"]["bonuses"] == ["Rainy Season: 1.3x"]
        assert body["tier"]["label"] == "Paisa Phase"
        assert body["tier"]["stepsInTier"] == 10_000
        assert body["streak"]["currentStreakDays"] == 1

    def test_read_back_record_and_history(self, client):
        _record(client)

        record = client.get("/v1/steps/alice/2024-06-03")
        assert record.status_code == 200
        assert record.json()["steps"] == 10_000

        history = client.get("/v1/steps/alice")
        assert [r["date"] for r in history.json()["history"]] == ["2024-06-03"]

    def test_missing_record_is_404(self, client):
        resp = client.get("/v1/steps/alice/2024-06-04")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_bad_date_is_400(self, client):
        resp = client.get("/v1/steps/alice/not-a-date")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_negative_steps_have_standard_error_shape(self, client):
        resp = _record(client, steps=-5)
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"]["code"] == "validation_error"
        assert body["error"]["request_id"] == resp.headers.get("x-request-id")

    def test_steps_after_redemption_conflict(self, client):
        _record(client)
        _redeem(client, "k1")

        resp = _record(client, steps=20_000)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "record_locked"


class TestWallet:
    def test_redeem_then_replay(self, client):
        _record(client)

        first = _redeem(client, "abc")
        second = _redeem(client, "abc")

        assert first.status_code == 200
        assert first.json()["status"] == "succeeded"
        assert first.json()["amount"] == 520
        assert second.status_code == 200
        assert second.json()["status"] == "already_processed"
        assert second.json()["newBalance"] == first.json()["newBalance"] == 520

        wallet = client.get("/v1/wallet/alice").json()
        assert wallet["balance"] == 520
        assert wallet["balanceRupees"] == 5.2
        txs = client.get("/v1/wallet/alice/transactions").json()["transactions"]
        assert len(txs) == 1
        assert txs[0]["balanceAfter"] == 520

    def test_key_in_body_is_accepted(self, client):
        _record(client)
        resp = client.post(
            "/v1/wallet/redeem",
            json={"user_id": "alice", "date": "2024-06-03", "idempotency_key": "body-key"},
        )
        assert resp.json()["idempotencyKey"] == "body-key"

    def test_missing_key_rejected(self, client):
        _record(client)
        resp = client.post("/v1/wallet/redeem", json={"user_id": "alice", "date": "2024-06-03"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_no_record_maps_to_404(self, client):
        resp = _redeem(client, "k1")
        assert resp.status_code == 404
        assert resp.json()["status"] == "no_record"
        assert resp.json()["retryable"] is False

    def test_rate_limit_maps_to_429(self, client):
        for i in range(5):
            assert _redeem(client, f"k{i}").status_code == 404
        resp = _redeem(client, "k5")
        assert resp.status_code == 429
        assert resp.json()["status"] == "rate_limited"
        assert resp.json()["retryable"] is True

    def test_reconcile(self, client):
        _record(client)
        _redeem(client, "abc")
        resp = client.post("/v1/wallet/reconcile")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "checked": 1, "mismatches": []}

    def test_unknown_wallet_reads_zero(self, client):
        assert client.get("/v1/wallet/nobody").json()["balance"] == 0


class TestTiersAndRates:
    def test_list_tiers(self, client):
        tiers = client.get("/v1/tiers").json()["tiers"]
        assert len(tiers) == 9
        assert tiers[-1]["label"] == "Immortal Phase"

    def test_progress_follows_recorded_steps(self, client):
        _record(client)
        body = client.get("/v1/tiers/alice/progress").json()
        assert body["tier"] == 1
        assert body["stepsInTier"] == 10_000
        assert body["stepsToNext"] == 190_000

    def test_quote_matches_worked_example(self, client):
        resp = client.get(
            "/v1/rates/quote",
            params={"steps": 10_000, "tier": 1, "date": "2024-06-08", "steps_in_tier": 50_000, "kinds": "weekend,milestone"},
        )
        assert resp.status_code == 200
        assert resp.json()["pendingUnits"] == 660

    def test_quote_rejects_unknown_kind_and_tier(self, client):
        assert client.get("/v1/rates/quote", params={"steps": 1, "kinds": "lunar"}).status_code == 400
        assert client.get("/v1/rates/quote", params={"steps": 1, "tier": 10}).status_code == 400


class TestStreaksAndEvents:
    def test_streak_view(self, client):
        _record(client)
        body = client.get("/v1/streaks/alice").json()
        assert body["currentStreakDays"] == 1
        assert body["qualifyingSteps"] == 5000

    def test_events_feed_lists_redemption(self, client):
        _record(client)
        _redeem(client, "abc")
        events = client.get("/v1/events/alice").json()["events"]
        assert events[0]["type"] == "redemption-succeeded"
        assert events[0]["payload"]["amount"] == 520


def test_metrics_exposes_domain_counters(client):
    _record(client)
    _redeem(client, "abc")
    text = client.get("/metrics").text
    assert "stepcoin_steps_recorded_total 1.0" in text
    assert 'stepcoin_redemptions_total{status="succeeded"} 1.0' in text
    assert "stepcoin_units_credited_total 520.0" in text
