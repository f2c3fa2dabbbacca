"""
HTTP transport for the UHI gateway.

- POST /gateway: one GatewayRequest envelope in, one GatewayResponse out.
  The business outcome travels in responseCode; the HTTP status is 200 for
  every envelope the gateway processed.
- GET /healthz: health check endpoint
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR
import uvicorn

from config import DatabaseConfig, GatewayConfig
from container import ServiceContainer
from database import DatabaseConnection, close_database, init_database
from models import GatewayRequest, GatewayResponse
from server import GatewayServer

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Global state (initialized at startup)
db: Optional[DatabaseConnection] = None
gateway: Optional[GatewayServer] = None
app = FastAPI(title="UHI Lookup Gateway")


def _valid_ip(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() != "unknown"


def get_client_ip(request: Request) -> str:
    """X-Forwarded-For (first hop), then X-Real-IP, then the socket peer"""
    forwarded_for = request.headers.get("x-forwarded-for")
    if _valid_ip(forwarded_for):
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if _valid_ip(real_ip):
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def set_gateway(server: Optional[GatewayServer], connection: Optional[DatabaseConnection] = None):
    """Install a gateway built elsewhere (used by tests and embedding code)"""
    global gateway, db
    gateway = server
    db = connection if connection is not None else (server.services.db if server else None)


@app.post("/gateway", response_model=GatewayResponse)
async def gateway_endpoint(envelope: GatewayRequest, request: Request):
    if gateway is None:
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Gateway not initialized"},
        )
    response = await gateway.handle(envelope, get_client_ip(request))
    return JSONResponse(content=response.model_dump())


@app.get("/healthz")
async def health_check():
    """Health check endpoint"""
    try:
        if db and await db.check_connection():
            return JSONResponse(content={
                "status": "healthy",
                "database": "connected",
                "pool": await db.get_pool_stats(),
            })
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "unhealthy", "error": "Database not initialized"}
        )
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "unhealthy", "error": str(e)}
        )


async def initialize_server():
    """Initialize database, services and dispatcher"""
    config = DatabaseConfig.from_environment()
    connection = await init_database(config)

    gateway_config = GatewayConfig.from_environment()
    set_gateway(GatewayServer(ServiceContainer(connection, gateway_config)), connection)

    logger.info(f"Connected to database: {config.database} at {config.host}")


async def shutdown_server():
    """Cleanup on shutdown"""
    global db, gateway
    if db:
        await db.disconnect()
    await close_database()
    logger.info("Database connection closed")
    db = None
    gateway = None


def run_http_server(host: str = "127.0.0.1", port: int = 8080):
    """
    Run the gateway over HTTP.

    Args:
        host: Host to bind to (default: 127.0.0.1)
        port: Port to listen on (default: 8080)
    """

    @app.on_event("startup")
    async def startup_event():
        await initialize_server()
        logger.info(f"UHI gateway (HTTP) starting on http://{host}:{port}/gateway")

    @app.on_event("shutdown")
    async def shutdown_event():
        await shutdown_server()

    uvicorn.run(app, host=host, port=port, log_level="info")
