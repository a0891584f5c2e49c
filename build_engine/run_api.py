# build_engine/run_api.py
"""Serve the build engine API with uvicorn."""

import argparse
import logging

import uvicorn

from build_engine.api.main import create_app
from build_engine.container import build_container
from build_engine.settings import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Build engine API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    container = build_container(
        settings,
        persistence=settings.persistence_backend,
        clients=settings.client_backend,
    )
    app = create_app(container)

    logger.info(f"🚀 Build engine API on {args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
