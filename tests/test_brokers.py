import threading
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import requests

from pulse_platform.brokers.base import create_broker
from pulse_platform.brokers.http.client import HttpBrokerClient
from pulse_platform.brokers.paper.client import PaperBroker
from pulse_platform.execution.errors import BrokerError


class TestPaperBroker:

    def test_fills_have_unique_ids(self):
        broker = PaperBroker()
        ids = [broker.place_order("NSE:INFY", "BUY", 5) for _ in range(3)]

        assert len(set(ids)) == 3
        assert [f.broker_order_id for f in broker.fills] == ids
        assert broker.fills[0].quantity == 5

    def test_rejected_instrument(self):
        broker = PaperBroker(reject_instruments={"NSE:BAD"})

        with pytest.raises(BrokerError):
            broker.place_order("NSE:BAD", "SELL", 1)
        assert broker.fills == []

    def test_thread_safe_ids(self):
        broker = PaperBroker()
        ids = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                oid = broker.place_order("NSE:INFY", "BUY", 1)
                with lock:
                    ids.append(oid)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(ids)) == 200


class TestHttpBrokerClient:

    @pytest.fixture
    def session(self):
        return Mock(spec=requests.Session)

    def _response(self, status_code, body=None, text=""):
        response = Mock()
        response.status_code = status_code
        response.text = text
        response.json.return_value = body
        return response

    def test_success(self, session):
        session.post.return_value = self._response(201, {"broker_order_id": "GW-1"})
        client = HttpBrokerClient("http://gateway/", timeout=3, session=session)

        assert client.place_order("NSE:INFY", "BUY", 7) == "GW-1"
        session.post.assert_called_once_with(
            "http://gateway/orders",
            json={"instrument": "NSE:INFY", "side": "BUY", "quantity": 7},
            timeout=3,
        )

    def test_non_2xx_is_broker_error(self, session):
        session.post.return_value = self._response(422, text="insufficient margin")
        client = HttpBrokerClient("http://gateway", session=session)

        with pytest.raises(BrokerError) as exc:
            client.place_order("NSE:INFY", "BUY", 7)
        assert "422" in str(exc.value)

    def test_transport_failure_is_broker_error(self, session):
        session.post.side_effect = requests.ConnectionError("refused")
        client = HttpBrokerClient("http://gateway", session=session)

        with pytest.raises(BrokerError):
            client.place_order("NSE:INFY", "BUY", 7)

    def test_missing_order_id_is_broker_error(self, session):
        session.post.return_value = self._response(200, {"status": "ok"})
        client = HttpBrokerClient("http://gateway", session=session)

        with pytest.raises(BrokerError):
            client.place_order("NSE:INFY", "BUY", 7)

    def test_threads_call_broker_concurrently_on_own_sessions(self):
        barrier = threading.Barrier(2, timeout=5)
        sessions = []

        def make_session():
            session = Mock(spec=requests.Session)

            def post(url, json, timeout):
                # both calls must be in flight at once to get past the barrier
                barrier.wait()
                return self._response(200, {"broker_order_id": f"GW-{json['quantity']}"})

            session.post.side_effect = post
            sessions.append(session)
            return session

        client = HttpBrokerClient("http://gateway", session_factory=make_session)
        results, errors = [], []

        def worker(quantity):
            try:
                results.append(client.place_order("NSE:INFY", "BUY", quantity))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(q,)) for q in (1, 2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert sorted(results) == ["GW-1", "GW-2"]
        assert len(sessions) == 2

    def test_session_reused_within_a_thread(self):
        created = []

        def make_session():
            session = Mock(spec=requests.Session)
            session.post.return_value = self._response(200, {"broker_order_id": "GW-1"})
            created.append(session)
            return session

        client = HttpBrokerClient("http://gateway", session_factory=make_session)
        client.place_order("NSE:INFY", "BUY", 1)
        client.place_order("NSE:INFY", "SELL", 1)

        assert len(created) == 1
        assert created[0].post.call_count == 2


class TestCreateBroker:

    def test_paper(self):
        cfg = SimpleNamespace(broker_mode="paper", broker_url=None, broker_timeout=10.0)
        assert isinstance(create_broker(cfg), PaperBroker)

    def test_http(self):
        cfg = SimpleNamespace(broker_mode="http", broker_url="http://gateway", broker_timeout=2.5)
        broker = create_broker(cfg)

        assert isinstance(broker, HttpBrokerClient)
        assert broker.base_url == "http://gateway"
        assert broker.timeout == 2.5
