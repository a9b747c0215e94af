import asyncio
import os
import sys

from core.config import settings
from core.logger import setup_logging, logger


async def start_api():
    import uvicorn
    from api.main import app
    port = int(os.getenv("PORT", "8000"))
    config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="debug" if settings.DEBUG else "info")
    server = uvicorn.Server(config)
    await server.serve()


async def init_db():
    from db.session import engine, init_models
    await init_models()
    await engine.dispose()
    logger.info("Database tables created", url=settings.DATABASE_URL.split("@")[-1])


async def main():
    # python main.py [api|init-db]
    mode = sys.argv[1] if len(sys.argv) > 1 else "api"

    setup_logging()

    if mode == "init-db":
        # PostgreSQL deployments run 'alembic upgrade head' instead
        await init_db()
        return

    if mode != "api":
        logger.error("Unknown mode, expected api or init-db", mode=mode)
        return

    # For scaling run 'uvicorn api.main:app --workers N' directly
    logger.info("Starting ExamShield API...", env=settings.ENV)
    await start_api()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Application stopped.")
