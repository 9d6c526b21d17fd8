#!/usr/bin/env python3
"""Serve the NutriMatch API with uvicorn."""

import argparse
import logging

import uvicorn
from dotenv import load_dotenv

from nutrimatch.api.app import create_app
from nutrimatch.core.settings import load_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)


def main():
    parser = argparse.ArgumentParser(description="Serve the NutriMatch API")
    parser.add_argument("--config", default=None, help="Path to settings YAML file")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    load_dotenv()
    app = create_app(load_settings(args.config))
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
