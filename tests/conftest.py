from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

import main_gateway
from services.kafka_service import (
    KafkaClient,
    MessageProducer,
    JsonMessageProducer,
    TopicMessageProducer
)
from utils.settings import Settings


def record_metadata(topic, partition=0, offset=42):
    return SimpleNamespace(topic=topic, partition=partition, offset=offset)


def make_kafka_producer():
    """A stand-in for kafka.KafkaProducer whose sends are acknowledged immediately"""
    producer = MagicMock()

    def send(topic, key=None, value=None):
        future = MagicMock()
        future.get.return_value = record_metadata(topic)
        return future

    producer.send.side_effect = send
    producer.bootstrap_connected.return_value = True
    return producer


@pytest.fixture
def settings():
    return Settings(kafka_connect_max_tries=1)


@pytest.fixture
def kafka_producer():
    return make_kafka_producer()


@pytest.fixture
def kafka_client(settings, kafka_producer):
    return KafkaClient(settings, producer_factory=MagicMock(return_value=kafka_producer))


@pytest.fixture
def client(settings, kafka_client):
    app = main_gateway.app
    app.dependency_overrides[main_gateway.get_message_producer] = lambda: MessageProducer(kafka_client, settings.topic)
    app.dependency_overrides[main_gateway.get_json_message_producer] = lambda: JsonMessageProducer(kafka_client, settings.json_topic)
    app.dependency_overrides[main_gateway.get_topic_message_producer] = lambda: TopicMessageProducer(kafka_client)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
