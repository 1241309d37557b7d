#!/usr/bin/env python3
"""
🧊🐧🧊 PiCool - Hardware Runner
==============================
Copyright (c) 2025 PNGN-Tec LLC

Runs the controller on a Raspberry Pi until the process is stopped.

Usage:
  picool /sys/bus/w1/devices/28-0316a2799cff/temperature 17
  picool /sys/bus/w1/devices/28-0316a2799cff/temperature 17 --log-level DEBUG
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from picool_control import create_controller
from picool_world import HardwareEnvironment

logger = logging.getLogger('PiCool')

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'
LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Adaptive refrigerator compressor controller")
    parser.add_argument('sensor_path', help="DS18B20 sysfs temperature file")
    parser.add_argument('relay_pin', type=int, help="BCM GPIO number driving the compressor relay")
    parser.add_argument('--log-level', default='INFO', choices=LOG_LEVELS,
                        help="logging verbosity (default: INFO)")
    return parser.parse_args(argv)


def configure_logging(level: str):
    logging.basicConfig(level=getattr(logging, level),
                        format=LOG_FORMAT)


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    configure_logging(args.log_level)
    logger.info("Starting picool control.")

    world = HardwareEnvironment(args.sensor_path, args.relay_pin)
    controller = create_controller(world)

    try:
        asyncio.run(controller.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, relay left as is")


if __name__ == "__main__":
    main()
