"""RELOCATE - position spoofing service.

Main FastAPI application.  The lifespan builds exactly one SpoofController
and one RouteSimulator and hangs them off ``app.state`` for the routers.
"""

import shlex
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from app.config import Settings, settings
from app.routers.events import router as events_router
from app.routers.geo import router as geo_router
from app.routers.route import router as route_router
from app.routers.spoof import router as spoof_router
from relocate.comms import (
    EventBus,
    EventLog,
    FanoutBroadcaster,
    FileBroadcaster,
    MemoryBroadcaster,
    MqttBroadcaster,
)
from relocate.controller import SpoofController
from relocate.routing import OsrmRouteSource
from relocate.shell import PrivilegedExecutor, ShellRunner, adb_prefix
from relocate.simulation import RouteSimulator
from relocate.sinks import MockLocationSink, RootSpoofSink, SpoofMode


# ---------------------------------------------------------------------------
# Subsystem startup helpers
# ---------------------------------------------------------------------------

def _configure_logging(cfg: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if cfg.debug else cfg.log_level.upper())


def _create_runners(cfg: Settings) -> tuple[ShellRunner, PrivilegedExecutor]:
    """Plain shell + privileged executor, over adb or on-device."""
    base = adb_prefix(cfg.adb_path, cfg.adb_serial) if cfg.use_adb else []
    privileged = base + shlex.split(cfg.privileged_prefix)
    return (
        ShellRunner(base, timeout=cfg.shell_timeout),
        PrivilegedExecutor(privileged, timeout=cfg.shell_timeout),
    )


def _create_broadcaster(cfg: Settings) -> tuple[MemoryBroadcaster, FanoutBroadcaster, MqttBroadcaster | None]:
    memory = MemoryBroadcaster()
    children = [memory]
    if cfg.broadcast_path is not None:
        children.append(FileBroadcaster(cfg.broadcast_path))
        logger.info(f"Broadcasting position to {cfg.broadcast_path}")
    mqtt = None
    if cfg.mqtt_enabled:
        mqtt = MqttBroadcaster(
            device_id=cfg.mqtt_device_id,
            broker_host=cfg.mqtt_host,
            broker_port=cfg.mqtt_port,
            username=cfg.mqtt_username,
            password=cfg.mqtt_password,
        )
        mqtt.start()
        children.append(mqtt)
    return memory, FanoutBroadcaster(children), mqtt


def create_services(cfg: Settings) -> dict:
    """Wire controller, simulator and collaborators from settings."""
    event_bus = EventBus()
    event_log = EventLog(event_bus, size=cfg.event_log_size)
    shell, privileged = _create_runners(cfg)
    sinks = {
        SpoofMode.DETECTABLE: MockLocationSink.over_shell(shell, cfg.target_package),
        SpoofMode.UNDETECTABLE: RootSpoofSink(privileged, cfg.target_package),
    }
    memory, broadcaster, mqtt = _create_broadcaster(cfg)
    controller = SpoofController(
        sinks,
        broadcaster=broadcaster,
        event_bus=event_bus,
        reassert_interval=cfg.reassert_interval,
    )
    simulator = RouteSimulator(
        controller,
        route_source=OsrmRouteSource(cfg.osrm_url, timeout=cfg.http_timeout,
                                     user_agent=cfg.user_agent),
        event_bus=event_bus,
        tick_interval=cfg.route_tick_interval,
        arrival_threshold=cfg.arrival_threshold,
        interpolate=cfg.route_interpolate,
        default_mode=SpoofMode(cfg.default_mode),
    )
    return {
        "event_bus": event_bus,
        "event_log": event_log,
        "controller": controller,
        "simulator": simulator,
        "published": memory,
        "mqtt": mqtt,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    _configure_logging(settings)
    logger.info("=" * 60)
    logger.info(f"  {settings.app_name} - INITIALIZING")
    logger.info("=" * 60)

    services = create_services(settings)
    for name, value in services.items():
        setattr(app.state, name, value)
    logger.info(f"Re-assertion every {settings.reassert_interval}s, "
                f"route tick {settings.route_tick_interval}s, "
                f"arrival threshold {settings.arrival_threshold} m")

    yield

    logger.info("Stopping route simulator...")
    services["simulator"].stop()
    logger.info("Stopping spoof session...")
    services["controller"].stop()
    if services["mqtt"] is not None:
        logger.info("Stopping MQTT broadcaster...")
        services["mqtt"].stop()
    services["event_log"].close()


app = FastAPI(
    title=settings.app_name,
    description="Position spoofing with route simulation",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(spoof_router)
app.include_router(route_router)
app.include_router(geo_router)
app.include_router(events_router)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run("app.main:app", host=settings.host, port=settings.port, reload=settings.debug)


if __name__ == "__main__":
    run()
