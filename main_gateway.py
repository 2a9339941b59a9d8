# main_gateway.py
from contextlib import asynccontextmanager
from fastapi import APIRouter, FastAPI, Request, Depends
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool
from models.data_record import MessageRequest
from models.user import User
from services.kafka_service import (
    KafkaClient,
    MessageProducer,
    JsonMessageProducer,
    TopicMessageProducer,
    MessageConsumer
)
from services.monitoring_service import BrokerMonitor, UNKNOWN
from utils.error_handler import (
    register_exception_handlers,
    request_middleware,
    handle_exceptions,
    KafkaError
)
from utils.logging_config import configure_logging
from utils.settings import load_settings
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import time
import logging

logger = logging.getLogger("kafka_gateway")

VERSION = "1.0.0"

settings = load_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Kafka Gateway Service")

    # Initialize services
    client = KafkaClient(settings)
    monitor = BrokerMonitor(client)
    consumer = MessageConsumer(settings, [settings.topic, settings.json_topic])
    scheduler = AsyncIOScheduler()

    # Exposed to the routes through the Depends providers below
    app.state.kafka_client = client
    app.state.message_producer = MessageProducer(client, settings.topic)
    app.state.json_message_producer = JsonMessageProducer(client, settings.json_topic)
    app.state.topic_message_producer = TopicMessageProducer(client)
    app.state.broker_monitor = monitor

    try:
        try:
            await run_in_threadpool(client.connect)
        except KafkaError as e:
            # The producer is created again on the first send
            logger.warning(f"Kafka not reachable at startup: {e.message}")

        # First probe now so /health has a status before the first interval
        await run_in_threadpool(monitor.check_broker)
        scheduler.add_job(
            monitor.check_broker,
            'interval',
            seconds=settings.broker_check_interval,
            id='check_broker'
        )

        logger.info("Starting scheduler")
        scheduler.start()

        if settings.consumer_enabled:
            logger.info("Starting Kafka consumer")
            consumer.start()

        logger.info("Kafka Gateway Service started successfully")
        yield

    except Exception as e:
        logger.error(f"Error during startup: {str(e)}", exc_info=True)
        raise
    finally:
        # Shutdown: clean up resources
        logger.info("Shutting down Kafka Gateway Service")
        if scheduler.running:
            scheduler.shutdown(wait=False)
        consumer.stop()
        await run_in_threadpool(client.close)
        logger.info("Kafka Gateway Service shutdown complete")

# Dependency providers, replaced through app.dependency_overrides in tests
def get_message_producer(request: Request) -> MessageProducer:
    return request.app.state.message_producer

def get_json_message_producer(request: Request) -> JsonMessageProducer:
    return request.app.state.json_message_producer

def get_topic_message_producer(request: Request) -> TopicMessageProducer:
    return request.app.state.topic_message_producer

def get_broker_monitor(request: Request):
    return getattr(request.app.state, "broker_monitor", None)

app = FastAPI(
    title="Kafka Gateway Service",
    description="Publishes HTTP payloads to Kafka topics",
    version=VERSION,
    lifespan=lifespan
)

# Register middleware and exception handlers
app.middleware("http")(request_middleware)
register_exception_handlers(app)

router = APIRouter(prefix="/api/messages")

# Blocking kafka-python calls run in the thread pool
@router.get("/send", response_class=PlainTextResponse)
@handle_exceptions
async def publish_message(
    message: str,
    producer: MessageProducer = Depends(get_message_producer)
):
    await run_in_threadpool(producer.send_message, message)
    return PlainTextResponse("Message sent successfully")

@router.post("/send", response_class=PlainTextResponse)
@handle_exceptions
async def publish_user(
    user: User,
    producer: JsonMessageProducer = Depends(get_json_message_producer)
):
    await run_in_threadpool(producer.send_message, user)
    return PlainTextResponse("Message sent successfully to kafka topic")

@router.post("/publish")
@handle_exceptions
async def publish_to_topic(
    data: MessageRequest,
    producer: TopicMessageProducer = Depends(get_topic_message_producer)
):
    result = await run_in_threadpool(producer.send_message, data)
    return {
        "status": "success",
        "message": "Message sent successfully",
        "details": result.model_dump()
    }

app.include_router(router)

@app.get("/health")
async def health_check(monitor: BrokerMonitor = Depends(get_broker_monitor)):
    broker = monitor.snapshot() if monitor else {"status": UNKNOWN, "last_checked": None}
    return {
        "status": "healthy",
        "broker": broker["status"],
        "broker_last_checked": broker["last_checked"],
        "timestamp": time.time(),
        "version": VERSION
    }

def main():
    configure_logging(settings.log_level, settings.log_dir)
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)

if __name__ == "__main__":
    main()
