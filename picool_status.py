#!/usr/bin/env python3
"""
🧊🐧🧊 PiCool - Telemetry Status
===============================
Copyright (c) 2025 PNGN-Tec LLC

Prints current sensor temperatures and the learned compensation of the
controlled sensor as InfluxDB line protocol, for use as a Telegraf `exec`
input. Temperatures are in °F, compensations are °F deltas.

Usage:
  picool-status refrigerator=/sys/bus/w1/devices/28-0316a2799cff/temperature \\
                freezer=/sys/bus/w1/devices/28-0316a27b33ff/temperature \\
                ambient=/sys/bus/w1/devices/28-0316a2a0c1ff/temperature

Output:
  temperature refrigerator=37.850,freezer=1.625,ambient=71.263
  compensation low=0.900,high=-0.450
"""

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from picool_config import STATE_DIR
from picool_control import c_to_f
from picool_run import LOG_FORMAT, LOG_LEVELS
from picool_world import FileStateStore, read_sensor, sensor_name_from_path

logger = logging.getLogger('PiCool.Status')

# Characters with meaning in line protocol field keys
_RESERVED = (' ', ',', '=')


def parse_sensor(value: str) -> Tuple[str, Path]:
    """'fridge=/sys/.../temperature' -> ('fridge', Path(...))"""
    name, sep, path = value.partition('=')
    if not sep or not name or not path:
        raise argparse.ArgumentTypeError(f"expected NAME=PATH, got {value!r}")
    if any(c in name for c in _RESERVED):
        raise argparse.ArgumentTypeError(f"sensor name {name!r} may not contain spaces, commas or '='")
    return name, Path(path)


def delta_c_to_f(delta: float) -> float:
    return delta * 9.0 / 5.0


def temperature_record(sensors: List[Tuple[str, Path]]) -> Optional[str]:
    """`temperature` line; sensors that cannot be read are left out"""
    fields = []
    for name, path in sensors:
        try:
            temp = read_sensor(path)
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping sensor {name}: {e}")
            continue
        fields.append(f"{name}={c_to_f(temp):.3f}")

    if not fields:
        return None
    return f"temperature {','.join(fields)}"


def compensation_record(store: FileStateStore) -> Optional[str]:
    """`compensation` line, or None before the controller has learned anything"""
    if not store.compensation_path.exists():
        return None
    try:
        low, high = store.load_compensation()
    except (OSError, ValueError) as e:
        logger.warning(f"Skipping compensation: {e}")
        return None
    return f"compensation low={delta_c_to_f(low):.3f},high={delta_c_to_f(high):.3f}"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print temperatures and compensation as InfluxDB line protocol")
    parser.add_argument('sensors', nargs='+', type=parse_sensor, metavar='NAME=PATH',
                        help="DS18B20 sysfs temperature file, labelled with its field name")
    parser.add_argument('--control', default=None,
                        help="sensor whose compensation is reported (default: the first one)")
    parser.add_argument('--state-dir', default=STATE_DIR,
                        help=f"controller state directory (default: {STATE_DIR})")
    parser.add_argument('--log-level', default='WARNING', choices=LOG_LEVELS)
    args = parser.parse_args(argv)

    names = [name for name, _ in args.sensors]
    if args.control is None:
        args.control = names[0]
    elif args.control not in names:
        parser.error(f"--control {args.control!r} is not one of {', '.join(names)}")
    return args


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    record = temperature_record(args.sensors)
    if record:
        print(record)

    control_path = dict(args.sensors)[args.control]
    store = FileStateStore(sensor_name_from_path(control_path), args.state_dir)
    record = compensation_record(store)
    if record:
        print(record)


if __name__ == "__main__":
    main()
