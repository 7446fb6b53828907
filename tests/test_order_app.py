import pytest

from pulse_platform.api.http.order_app import OrderApp


@pytest.fixture
def client(ingress, order_repo, slice_repo):
    app = OrderApp(ingress=ingress, order_repo=order_repo, slice_repo=slice_repo).get_app()
    app.config["TESTING"] = True
    return app.test_client()


def _body(**overrides):
    body = {
        "order_unique_key": "HTTP-1",
        "instrument": "NSE:RELIANCE",
        "side": "BUY",
        "total_quantity": 100,
        "split_config": {"num_splits": 4, "duration_minutes": 60, "randomize": False},
    }
    body.update(overrides)
    return body


class TestCreateOrderEndpoint:

    def test_accepted(self, client, order_repo):
        resp = client.post("/orders", json=_body())

        assert resp.status_code == 202
        data = resp.get_json()
        assert data["order_unique_key"] == "HTTP-1"
        assert order_repo.get_by_id(data["order_id"]) is not None

    def test_replay_returns_same_order(self, client):
        first = client.post("/orders", json=_body()).get_json()
        second = client.post("/orders", json=_body())

        assert second.status_code == 202
        assert second.get_json()["order_id"] == first["order_id"]

    def test_randomize_defaults_to_true(self, client, order_repo):
        body = _body()
        del body["split_config"]["randomize"]

        data = client.post("/orders", json=body).get_json()
        assert order_repo.get_by_id(data["order_id"]).split_config.randomize is True

    def test_conflict(self, client):
        first = client.post("/orders", json=_body()).get_json()
        resp = client.post("/orders", json=_body(total_quantity=500))

        assert resp.status_code == 409
        error = resp.get_json()["error"]
        assert error["code"] == "DUPLICATE_KEY_CONFLICT"
        assert error["details"]["existing_order_id"] == first["order_id"]

    def test_invalid_json(self, client):
        resp = client.post("/orders", data="{not json", content_type="application/json")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "VALIDATION_ERROR"

    def test_schema_errors_listed(self, client):
        body = _body(side="HOLD")
        del body["total_quantity"]

        resp = client.post("/orders", json=body)

        assert resp.status_code == 400
        fields = {e["field"] for e in resp.get_json()["error"]["details"]["errors"]}
        assert {"side", "total_quantity"} <= fields

    @pytest.mark.parametrize(
        "overrides",
        [
            {"total_quantity": "100"},
            {"total_quantity": 0},
            {"split_config": {"num_splits": 1, "duration_minutes": 60}},
            {"split_config": {"num_splits": 4, "duration_minutes": 2000}},
            {"split_config": {"num_splits": "4", "duration_minutes": 60}},
        ],
    )
    def test_schema_rejections(self, client, order_repo, overrides):
        resp = client.post("/orders", json=_body(**overrides))

        assert resp.status_code == 400
        assert sum(order_repo.count_by_status().values()) == 0

    def test_business_rule_rejection_names_field(self, client):
        resp = client.post("/orders", json=_body(total_quantity=3))

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["field"] == "total_quantity"

    def test_bad_instrument(self, client):
        resp = client.post("/orders", json=_body(instrument="RELIANCE"))

        assert resp.status_code == 400
        assert resp.get_json()["error"]["details"]["field"] == "instrument"


class TestReadEndpoints:

    def test_order_detail_with_slices(self, client, splitter):
        order_id = client.post("/orders", json=_body()).get_json()["order_id"]

        pending = client.get(f"/orders/{order_id}").get_json()
        assert pending["order"]["status"] == "PENDING"
        assert pending["aggregate"]["total"] == 0
        assert pending["slices"] == []
        assert "request_payload" not in pending["order"]

        splitter.poll_once()

        split = client.get(f"/orders/{order_id}").get_json()
        assert split["order"]["status"] == "IN_PROGRESS"
        assert split["aggregate"]["scheduled"] == 4
        assert [s["quantity"] for s in split["slices"]] == [25, 25, 25, 25]

    def test_list_orders_with_status_filter(self, client, splitter, clock):
        first = client.post("/orders", json=_body(order_unique_key="L-1")).get_json()["order_id"]
        clock.advance(seconds=1)
        second = client.post("/orders", json=_body(order_unique_key="L-2")).get_json()["order_id"]
        splitter.poll_once()

        everything = client.get("/orders").get_json()
        assert [o["order_id"] for o in everything["orders"]] == [second, first]

        pending = client.get("/orders?status=pending").get_json()
        assert [o["order_id"] for o in pending["orders"]] == [second]

        assert client.get("/orders?status=CANCELLED").status_code == 400
        assert client.get("/orders?limit=abc").status_code == 400

    def test_unknown_order(self, client):
        resp = client.get("/orders/does-not-exist")

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "NOT_FOUND"

    def test_history(self, client, splitter):
        order_id = client.post("/orders", json=_body()).get_json()["order_id"]
        splitter.poll_once()

        resp = client.get(f"/orders/{order_id}/history")

        assert resp.status_code == 200
        assert [h["status"] for h in resp.get_json()["history"]] == ["PENDING", "IN_PROGRESS"]

    def test_history_unknown_order(self, client):
        assert client.get("/orders/nope/history").status_code == 404

    def test_health_without_workers(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "healthy"
        assert data["services"] == {}
        assert data["orders"]["PENDING"] == 0
