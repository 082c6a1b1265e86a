from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import json
import pydantic
import structlog

from deskmate.config import Settings, get_settings
from deskmate.application.container import Services, build_services
from deskmate.application.api.route import agent, voice
from deskmate.domain.models.agent_state import utcnow
from deskmate.domain.streaming.streaming_handler import PROCESSING_FAILED_MESSAGE
from deskmate.infrastructure.observability.logging import metrics, setup_logging
from .schema.events import ClientEvent, ErrorCode, EventType

logger = structlog.get_logger(__name__)


async def maintenance_loop(services: Services):
    """Periodic housekeeping until cancelled"""

    interval = services.settings.maintenance_interval_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            await services.run_maintenance()
        except Exception as e:
            logger.error("Maintenance pass failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background housekeeping and tear the services down on shutdown"""

    services: Services = app.state.services
    maintenance_task = asyncio.create_task(maintenance_loop(services))
    logger.info("WebSocket server started")

    yield

    maintenance_task.cancel()
    try:
        await maintenance_task
    except asyncio.CancelledError:
        logger.debug("Maintenance loop stopped")

    await services.shutdown()
    logger.info("WebSocket server shutdown")


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Application factory; pass prebuilt services to swap collaborators"""

    settings = settings or (services.settings if services else get_settings())
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    app = FastAPI(title="Deskmate Agent Server", lifespan=lifespan)
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(agent.router)
    app.include_router(voice.router)

    @app.websocket("/ws")
    async def agent_websocket(websocket: WebSocket):
        """Main channel endpoint; one connection may join one session at a time"""

        services: Services = websocket.app.state.services
        connection_id = await services.connections.connect(websocket)

        try:
            while True:
                raw = await websocket.receive_text()
                services.connections.touch(connection_id)

                with structlog.contextvars.bound_contextvars(connection_id=connection_id):
                    await handle_client_message(services, connection_id, raw)

        except WebSocketDisconnect:
            logger.info("Client disconnected", connection_id=connection_id)
        except Exception as e:
            logger.error("WebSocket error", error=str(e), connection_id=connection_id)
        finally:
            await services.connections.disconnect(connection_id, close=False)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        services: Services = app.state.services
        return {
            "status": "healthy",
            "activeConnections": len(services.connections.active_connections),
            "voiceAvailable": services.speech.available,
            "cache": await services.cache.get_stats(),
            "metrics": metrics.get_metrics_summary(),
            "timestamp": utcnow().isoformat()
        }

    return app


async def handle_client_message(services: Services, connection_id: str, raw: str):
    """Parse one inbound frame and route it; failures become error events"""

    connections = services.connections

    try:
        event = ClientEvent.model_validate(json.loads(raw))
    except (ValueError, pydantic.ValidationError) as e:
        logger.warning("Malformed client event", error=str(e))
        await connections.send_error(connection_id, ErrorCode.INVALID_EVENT, "Malformed event")
        return

    handlers = {
        EventType.JOIN_SESSION.value: services.turns.handle_join,
        EventType.USER_MESSAGE.value: services.turns.handle_user_message,
        EventType.USER_VOICE_START.value: services.turns.handle_voice_start,
        EventType.USER_VOICE_END.value: services.turns.handle_voice_end,
    }

    handler = handlers.get(event.type)
    if handler is None:
        logger.warning("Unknown client event", event_type=event.type)
        await connections.send_error(connection_id, ErrorCode.INVALID_EVENT, f"Unknown event type: {event.type}")
        return

    try:
        await handler(connection_id, event.payload)
    except pydantic.ValidationError as e:
        logger.warning("Invalid event payload", event_type=event.type, error=str(e))
        await connections.send_error(connection_id, ErrorCode.INVALID_EVENT, f"Invalid payload for {event.type}")
    except Exception as e:
        logger.error("Error processing message", event_type=event.type, error=str(e))
        await connections.send_error(connection_id, ErrorCode.PROCESSING_ERROR, PROCESSING_FAILED_MESSAGE)


def main():
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "deskmate.application.websocket.ws_server:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
