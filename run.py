#!/usr/bin/env python3
"""
Generate an itinerary from a JSON request file and print the result
"""

import asyncio
import json
import logging
import sys

from pydantic import ValidationError

from itinerary_engine.models.request_models import GenerationRequest
from itinerary_engine.services.generation_engine import build_default_engine
from itinerary_engine.utils.config import get_settings, validate_settings
from itinerary_engine.utils.errors import ItineraryEngineError


def main():
    """Main entry point"""
    settings = get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=settings.LOG_FORMAT
    )
    logger = logging.getLogger(__name__)

    if len(sys.argv) != 2:
        logger.error("Usage: run.py <request.json>")
        return 2

    if not validate_settings(settings):
        logger.error("Invalid configuration. Please check your environment variables.")
        return 1

    try:
        with open(sys.argv[1], encoding="utf-8") as fh:
            request = GenerationRequest.model_validate(json.load(fh))
    except (OSError, json.JSONDecodeError, ValidationError, ItineraryEngineError) as e:
        logger.error(f"Could not load request: {str(e)}")
        return 1

    engine = build_default_engine(settings)
    logger.info(f"Engine Version: {settings.ENGINE_VERSION}")
    logger.info(f"Debug Mode: {settings.DEBUG_MODE}")

    try:
        result = asyncio.run(engine.generate_itinerary(request))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130

    print(result.model_dump_json(indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
