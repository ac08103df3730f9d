import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from config import settings
from models import async_session, engine
from api.history import router as history_router
from api.alarms import router as alarms_router
from api.acquisition import router as acquisition_router
from core.connections import InMemoryConnectionManager, RedisConnectionManager
from core.health import HealthCounters
from core.live_cache import InMemoryLiveValueCache, RedisLiveValueCache
from core.node_map import NodeMap
from services.acquisition import AcquisitionScheduler
from services.aggregation import AggregationQueryEngine
from services.alarm_evaluator import AlarmEvaluator
from services.alarm_records import AlarmRecordService
from services.alarm_state import AlarmStateTracker
from services.camera import CameraSnapshotClient
from services.email_sender import SmtpEmailSender
from services.metric_catalog import METRIC_CATALOG
from services.notifier import NotificationDispatcher, SiteRecipientDirectory
from services.sms_gateway import SmsGatewayClient

VERSION = "1.0.0"

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("pumproom.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Pump room backend starting... DEBUG=%s DEMO_MODE=%s", settings.DEBUG, settings.DEMO_MODE)

    health = HealthCounters()
    app.state.health = health
    node_map = NodeMap.load(settings.NODES_CONFIG_PATH)

    # Live value cache (demo or production)
    redis = None
    feeder = None
    if settings.DEMO_MODE:
        from services.demo_feeder import DemoFeeder
        cache = InMemoryLiveValueCache()
        connections = InMemoryConnectionManager()
        feeder = DemoFeeder(cache, connections, node_map)
        logger.info("DEMO_MODE enabled: using DemoFeeder")
    else:
        redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)
        cache = RedisLiveValueCache(redis)
        connections = RedisConnectionManager(redis)
        logger.info("Redis live cache: %s", settings.REDIS_URL)

    # Notifications
    sms = SmsGatewayClient()
    if not sms.is_configured:
        logger.warning("SMS gateway not configured: SMS and voice will report failure")
    mailer = SmtpEmailSender()
    if not mailer.is_configured:
        logger.warning("SMTP not configured: e-mail will report failure")
    camera = CameraSnapshotClient()
    dispatcher = NotificationDispatcher(
        SiteRecipientDirectory(async_session), mailer, sms, camera, health=health,
    )
    app.state.dispatcher = dispatcher

    # Acquisition: one scheduler per catalog metric
    schedulers = [
        AcquisitionScheduler(metric, async_session, cache, connections, node_map, health=health)
        for metric in METRIC_CATALOG
    ]
    app.state.schedulers = schedulers

    # Alarm evaluation
    records = AlarmRecordService(async_session)
    app.state.alarm_records = records
    evaluator = AlarmEvaluator(
        async_session, cache, connections,
        records=records, state=AlarmStateTracker(), dispatcher=dispatcher, health=health,
    )
    app.state.alarm_evaluator = evaluator
    app.state.query_engine = AggregationQueryEngine(async_session)

    loops = [*schedulers, evaluator, dispatcher]
    if feeder:
        loops.insert(0, feeder)
    tasks = [asyncio.create_task(loop.start()) for loop in loops]

    yield

    # Shutdown
    logger.info("Pump room backend shutting down...")
    for loop in reversed(loops):
        await loop.stop()
    for t in tasks:
        t.cancel()
    for t in tasks:
        try:
            await t
        except asyncio.CancelledError:
            pass

    await sms.close()
    await camera.close()
    if redis is not None:
        await redis.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Pump Room SCADA API",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(history_router)
app.include_router(alarms_router)
app.include_router(acquisition_router)


@app.get("/health")
async def health():
    counters = getattr(app.state, "health", None)
    dispatcher = getattr(app.state, "dispatcher", None)
    return {
        "status": "ok",
        "version": VERSION,
        "failures": counters.snapshot() if counters else {},
        "notifications": {
            "pending": dispatcher.pending,
            "dropped": dispatcher.dropped,
            "completed": dispatcher.completed,
        } if dispatcher else None,
    }
