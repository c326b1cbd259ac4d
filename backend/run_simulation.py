"""
Run a CitySim simulation from the command line.

Generates a city from a seed, optionally loads a policy file, and advances
it month by month. The report is printed every few months; nothing is
written to disk.

Usage:
    python run_simulation.py --seed 1337 --months 24 --policy austerity.json
"""

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Dict, Optional

from config import CONFIG
from engine import advance
from models import CityReport, WorldState
from reporting import district_summary, format_money, format_pct
from world import create_city


def load_policy_overrides(path: str) -> Dict[str, object]:
    """
    Read a JSON policy file.

    The file may hold any subset of the policy fields (camelCase or
    snake_case); missing fields keep their defaults.

    Raises:
        ValueError: if the file is not a JSON object
    """
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Policy file {path} must contain a JSON object")
    return data


def print_report(report: CityReport) -> None:
    print(f"--- Month {report.month} ---")
    for line in report.highlights:
        print(f"  {line}")
    worst = report.worst_districts
    print(f"  Worst satisfaction: {', '.join(worst.by_satisfaction)}")
    print(f"  Worst crime:        {', '.join(worst.by_crime)}")
    print(f"  Worst water:        {', '.join(worst.by_water)}")


def print_summary(world: WorldState, start_month: int, total_time: float) -> None:
    city = world.city
    report = city.last_report
    months = city.month - start_month

    print()
    print("=" * 80)
    print("CITY SUMMARY")
    print("=" * 80)
    print(f"  Seed:                         {city.seed:>18}")
    print(f"  Months simulated:             {months:>18,}")
    print(f"  Cash:                         {format_money(city.cash):>18}")
    print(f"  Debt:                         {format_money(city.debt):>18}")
    print(f"  Trust:                        {format_pct(city.citywide.trust):>18}")
    print(f"  Unemployment:                 {format_pct(city.citywide.unemployment):>18}")
    print(f"  Avg satisfaction:             {format_pct(report.avg_satisfaction):>18}")
    print(f"  Avg crime:                    {format_pct(report.avg_crime):>18}")
    print(f"  Avg water outages:            {format_pct(report.avg_water_outages):>18}")
    print(f"  Population:                   {sum(d.pop for d in world.districts):>18,}")
    if months > 0:
        print(f"  Average time per month:       {total_time / months * 1000:>15.2f} ms")
    print("=" * 80)


def main(
    seed: int,
    months: int,
    print_every: int = 1,
    policy_path: Optional[str] = None,
    inspect_id: Optional[str] = None
) -> WorldState:
    """
    Generate a city and run it for a number of months.

    Returns:
        The final world state
    """
    print(f"Creating city with seed {seed}...")
    world = create_city(seed)

    if policy_path:
        world.city.policy.apply_overrides(load_policy_overrides(policy_path))
        print(f"Loaded policy from {policy_path}")

    print_report(world.city.last_report)

    start_month = world.city.month
    start_time = time.time()
    for _ in range(months):
        advance(world.city, world.districts)
        if print_every > 0 and world.city.month % print_every == 0:
            print_report(world.city.last_report)
    total_time = time.time() - start_time

    print_summary(world, start_month, total_time)

    if inspect_id:
        district = world.get_district(inspect_id)
        if district is None:
            print(f"No district with id {inspect_id}")
        else:
            print()
            print(district_summary(district))

    return world


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run CitySim simulation.")
    parser.add_argument("--seed", type=int, default=CONFIG.grid.default_seed, help="World seed")
    parser.add_argument("--months", type=int, default=12, help="Number of months to run")
    parser.add_argument("--print-every", type=int, default=1, help="Report interval (months, 0 = never)")
    parser.add_argument("--policy", type=str, default=None, help="JSON file with policy overrides")
    parser.add_argument("--inspect", type=str, default=None, help="District id to describe at the end")
    args = parser.parse_args()

    try:
        main(
            seed=args.seed,
            months=args.months,
            print_every=args.print_every,
            policy_path=args.policy,
            inspect_id=args.inspect
        )
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
