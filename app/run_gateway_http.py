# app/run_gateway_http.py
import asyncio, os
import uvicorn

from infra import GatewayContainer
from utils.config import load_cfg
from utils.logger import logger
from app.gateway_http import build_app


async def main():
    cfg = load_cfg(os.environ.get("GATEWAY_CONFIG"))
    container = await GatewayContainer.start(cfg)

    app = build_app(container)
    http_cfg = cfg.get("http", {}) or {}
    server = uvicorn.Server(
        uvicorn.Config(app, host=http_cfg.get("host", "127.0.0.1"),
                            port=int(os.environ.get("PORT") or http_cfg.get("port", 3001)),
                            loop="asyncio",
                            lifespan="off",
                            timeout_keep_alive=10,
                            log_config=None,
                            access_log=False)
    )

    logger.info(f"Trading gateway listening on {server.config.host}:{server.config.port}")
    try:
        # uvicorn owns SIGINT/SIGTERM and returns once it has drained
        await server.serve()
    finally:
        logger.info("Shutting down gracefully...")
        await container.stop()

if __name__ == "__main__":
    asyncio.run(main())
