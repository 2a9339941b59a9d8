import json
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
from kafka.errors import KafkaTimeoutError

import main_gateway
from services import kafka_service
from utils.settings import Settings
from tests.conftest import make_kafka_producer, record_metadata


def test_send_message_publishes_to_text_topic(client, kafka_producer):
    r = client.get("/api/messages/send", params={"message": "hello kafka"})

    assert r.status_code == 200
    assert r.text == "Message sent successfully"
    assert r.headers["content-type"].startswith("text/plain")
    kafka_producer.send.assert_called_once_with("test-topic", key=None, value="hello kafka")


def test_send_message_requires_message_param(client, kafka_producer):
    r = client.get("/api/messages/send")

    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"
    kafka_producer.send.assert_not_called()


def test_send_user_publishes_json_to_json_topic(client, kafka_producer):
    user = {"id": 7, "name": "Ada", "action": "login"}

    r = client.post("/api/messages/send", json=user)

    assert r.status_code == 200
    assert r.text == "Message sent successfully to kafka topic"
    kafka_producer.send.assert_called_once()
    args, kwargs = kafka_producer.send.call_args
    assert args == ("test-json-topic",)
    assert kwargs["key"] is None
    assert json.loads(kwargs["value"]) == user


def test_send_user_rejects_invalid_payload(client, kafka_producer):
    r = client.post("/api/messages/send", json={"id": "not-a-number", "name": "Ada"})

    assert r.status_code == 400
    body = r.json()
    assert body["error"] is True
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"]["errors"]
    kafka_producer.send.assert_not_called()


def test_publish_forwards_topic_key_and_payload_unchanged(client, kafka_producer):
    payload = {"topic": "orders", "key": "order-1", "message": {"amount": 12.5, "items": ["a", "b"]}}

    r = client.post("/api/messages/publish", json=payload)

    assert r.status_code == 200
    assert r.json() == {
        "status": "success",
        "message": "Message sent successfully",
        "details": {"topic": "orders", "partition": 0, "offset": 42},
    }
    kafka_producer.send.assert_called_once_with("orders", key="order-1", value=payload["message"])


def test_publish_without_key(client, kafka_producer):
    r = client.post("/api/messages/publish", json={"topic": "events", "message": "plain text"})

    assert r.status_code == 200
    kafka_producer.send.assert_called_once_with("events", key=None, value="plain text")


def test_publish_requires_topic(client, kafka_producer):
    r = client.post("/api/messages/publish", json={"message": "no topic"})

    assert r.status_code == 400
    kafka_producer.send.assert_not_called()


def test_broker_error_on_send_returns_503(client, kafka_producer):
    kafka_producer.send.side_effect = KafkaTimeoutError("metadata not available")

    r = client.get("/api/messages/send", params={"message": "hello"})

    assert r.status_code == 503
    body = r.json()
    assert body["code"] == "KAFKA_ERROR"
    assert body["details"] == {"topic": "test-topic"}
    assert kafka_producer.send.call_count == 1


def test_missing_acknowledgment_returns_503(client, kafka_producer):
    future = MagicMock()
    future.get.side_effect = KafkaTimeoutError("no ack")
    kafka_producer.send.side_effect = None
    kafka_producer.send.return_value = future

    r = client.post("/api/messages/publish", json={"topic": "orders", "message": 1})

    assert r.status_code == 503
    assert r.json()["code"] == "KAFKA_ERROR"
    kafka_producer.send.assert_called_once_with("orders", key=None, value=1)


def test_unexpected_error_returns_500(client, kafka_producer):
    kafka_producer.send.side_effect = RuntimeError("boom")

    r = client.post("/api/messages/send", json={"id": 1, "name": "Ada", "action": "logout"})

    assert r.status_code == 500
    assert r.json()["code"] == "INTERNAL_ERROR"


def test_request_id_is_echoed(client):
    r = client.get("/api/messages/send", params={"message": "hi"}, headers={"X-Request-ID": "req-123"})

    assert r.headers["X-Request-ID"] == "req-123"


def test_request_id_is_generated(client):
    r = client.get("/api/messages/send", params={"message": "hi"})

    assert r.headers["X-Request-ID"]


def test_health_without_monitor_reports_unknown_broker(client):
    main_gateway.app.dependency_overrides[main_gateway.get_broker_monitor] = lambda: None

    r = client.get("/health")

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["broker"] == "unknown"
    assert body["version"] == main_gateway.VERSION


def test_lifespan_wires_services_to_kafka(monkeypatch):
    producer = make_kafka_producer()
    producer_class = MagicMock(return_value=producer)
    monkeypatch.setattr(kafka_service, "KafkaProducer", producer_class)
    monkeypatch.setattr(main_gateway, "settings", Settings())

    with TestClient(main_gateway.app) as c:
        health = c.get("/health").json()
        r = c.get("/api/messages/send", params={"message": "through the container"})

    assert health["broker"] == "connected"
    assert r.status_code == 200
    producer_class.assert_called_once()
    assert producer_class.call_args.kwargs["bootstrap_servers"] == ["localhost:9092"]
    producer.send.assert_called_once_with("test-topic", key=None, value="through the container")
    producer.flush.assert_called_once()
    producer.close.assert_called_once()


def test_publish_rejects_null_message_without_key(client, kafka_producer):
    r = client.post("/api/messages/publish", json={"topic": "orders", "message": None})

    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"
    kafka_producer.send.assert_not_called()


def test_publish_allows_keyed_null_message(client, kafka_producer):
    r = client.post("/api/messages/publish", json={"topic": "orders", "key": "order-1", "message": None})

    assert r.status_code == 200
    kafka_producer.send.assert_called_once_with("orders", key="order-1", value=None)


def test_concurrent_requests_keep_their_own_request_context(client, kafka_producer):
    slow_entered = threading.Event()
    release_slow = threading.Event()

    def send(topic, key=None, value=None):
        if value == "slow":
            slow_entered.set()
            release_slow.wait(5)
        future = MagicMock()
        future.get.return_value = record_metadata(topic)
        return future

    kafka_producer.send.side_effect = send

    with ThreadPoolExecutor(max_workers=1) as pool:
        slow = pool.submit(
            client.get, "/api/messages/send", params={"message": "slow"}, headers={"X-Request-ID": "slow-1"}
        )
        assert slow_entered.wait(5)

        # Finishes while the slow request is still waiting on its acknowledgment
        fast = client.get("/api/messages/send", params={"message": "fast"}, headers={"X-Request-ID": "fast-1"})
        release_slow.set()
        slow_response = slow.result(timeout=10)

    assert fast.status_code == 200
    assert fast.headers["X-Request-ID"] == "fast-1"
    assert slow_response.status_code == 200
    assert slow_response.text == "Message sent successfully"
    assert slow_response.headers["X-Request-ID"] == "slow-1"
    assert kafka_producer.send.call_count == 2


def test_error_response_carries_its_own_request_id(client, kafka_producer):
    kafka_producer.send.side_effect = KafkaTimeoutError("no leader")

    r = client.get("/api/messages/send", params={"message": "hi"}, headers={"X-Request-ID": "req-503"})

    assert r.status_code == 503
    assert r.json()["request_id"] == "req-503"


def test_lifespan_starts_and_stops_consumer_when_enabled(monkeypatch):
    producer = make_kafka_producer()
    monkeypatch.setattr(kafka_service, "KafkaProducer", MagicMock(return_value=producer))
    kafka_consumer = MagicMock()
    kafka_consumer.__iter__.side_effect = lambda: iter([])
    consumer_class = MagicMock(return_value=kafka_consumer)
    monkeypatch.setattr(kafka_service, "KafkaConsumer", consumer_class)
    monkeypatch.setattr(main_gateway, "settings", Settings(consumer_enabled=True, group_id="gateway-test"))

    with TestClient(main_gateway.app) as c:
        assert c.get("/health").status_code == 200
        consumer_class.assert_called_once()

    args, kwargs = consumer_class.call_args
    assert args == ("test-topic", "test-json-topic")
    assert kwargs["group_id"] == "gateway-test"
    kafka_consumer.close.assert_called_once()
