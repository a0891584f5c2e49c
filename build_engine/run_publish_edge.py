# build_engine/run_publish_edge.py
"""Render and publish the tenant routing function for the shared distribution."""

import argparse
import logging

from build_engine.container import build_container
from build_engine.edge.function_code import publish_edge_function, render_edge_function
from build_engine.settings import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Publish the edge routing function")
    parser.add_argument("--dry-run", action="store_true", help="print the code instead of publishing")
    args = parser.parse_args()

    container = build_container(settings, clients=settings.client_backend)
    config = container.routing_config

    if args.dry_run:
        print(render_edge_function(config))
        return

    reference = publish_edge_function(container.cdn, settings.edge_function_name, config)
    logger.info(f"Function reference: {reference}")


if __name__ == "__main__":
    main()
