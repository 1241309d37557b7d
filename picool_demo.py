#!/usr/bin/env python3
"""
🧊🐧🧊 PiCool - Simulated Run
============================
Copyright (c) 2025 PNGN-Tec LLC

Drives the controller against the simulated refrigerator for a fixed number
of off-cycles, then reports how the achieved band compares to the target.

Usage:
  picool-demo
  picool-demo --off-cycles 20 --noise 0.05 --failure-rate 0.01 --seed 7
  picool-demo --state-dir /tmp/picool --export trace.npz
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from picool_config import SIM_OFF_CYCLES, SIM_SENSOR_ID, TARGET_RANGE_LOW, TARGET_RANGE_HIGH
from picool_control import create_controller, format_c_and_f
from picool_run import LOG_FORMAT, LOG_LEVELS
from picool_sim import SimulatedEnvironment, SimulationRecorder
from picool_world import FileStateStore


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the controller against a simulated refrigerator")
    parser.add_argument('--off-cycles', type=int, default=SIM_OFF_CYCLES,
                        help=f"stop after this many compressor off-cycles (default: {SIM_OFF_CYCLES})")
    parser.add_argument('--time-warp', type=float, default=None,
                        help="real-time scaling; omit to run as fast as possible")
    parser.add_argument('--noise', type=float, default=0.0, help="sensor noise std-dev in °C")
    parser.add_argument('--failure-rate', type=float, default=0.0, help="probability a sensor read fails")
    parser.add_argument('--seed', type=int, default=None, help="random seed for noise and failures")
    parser.add_argument('--state-dir', default=None,
                        help="persist state here (restored on the next run)")
    parser.add_argument('--export', default=None, help="save the trace as a .npz file")
    parser.add_argument('--log-level', default='WARNING', choices=LOG_LEVELS)
    return parser.parse_args(argv)


async def simulate(args: argparse.Namespace) -> SimulationRecorder:
    store = FileStateStore(SIM_SENSOR_ID, args.state_dir) if args.state_dir else None
    world = SimulatedEnvironment(
        store=store,
        time_warp=args.time_warp,
        sensor_noise_c=args.noise,
        read_failure_rate=args.failure_rate,
        seed=args.seed,
    )
    controller = create_controller(world, max_off_cycles=args.off_cycles)
    recorder = SimulationRecorder()
    controller.register_poll_callback(recorder)

    await controller.run()

    stats = controller.get_statistics()
    print(f"📊 Controller: {stats['polls']} polls, {stats['on_cycles']} on / "
          f"{stats['off_cycles']} off cycles, {stats['read_failures']} read failures")
    print(f"   Low threshold:  {format_c_and_f(stats['low_threshold'])} "
          f"(comp {stats['low_compensation']:+.2f}{' CAPPED' if stats['low_capped'] else ''})")
    print(f"   High threshold: {format_c_and_f(stats['high_threshold'])} "
          f"(comp {stats['high_compensation']:+.2f}{' CAPPED' if stats['high_capped'] else ''})")
    return recorder


def print_summary(recorder: SimulationRecorder):
    summary = recorder.summary()
    if summary['samples'] == 0:
        print("No samples recorded")
        return

    print(f"\n🧊 Simulated {summary['duration'] / 3600:.1f}h, duty cycle {summary['duty_cycle']:.0%}")
    print(f"   Target band:   {TARGET_RANGE_LOW:.2f}C .. {TARGET_RANGE_HIGH:.2f}C")
    print(f"   Observed:      {summary['min_temp']:.2f}C .. {summary['max_temp']:.2f}C "
          f"(p5 {summary['p5_temp']:.2f}C, p95 {summary['p95_temp']:.2f}C)")
    if summary['mean_off_cycle_min'] is not None:
        print(f"   Mean off-cycle minimum: {summary['mean_off_cycle_min']:.2f}C")
    if summary['mean_on_cycle_max'] is not None:
        print(f"   Mean on-cycle maximum:  {summary['mean_on_cycle_max']:.2f}C")


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    print("🧊 Simulating refrigerator...")
    try:
        recorder = asyncio.run(simulate(args))
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user")
        return

    print_summary(recorder)
    if args.export:
        path = recorder.save(args.export)
        print(f"\n✅ Trace saved to {path}")


if __name__ == "__main__":
    main()
