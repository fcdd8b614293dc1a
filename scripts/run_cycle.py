"""Run one deal cycle in the foreground."""

from __future__ import annotations

import argparse
import asyncio
import json

from dotenv import load_dotenv

from dealbot.jobs.cycle import run_cycle
from dealbot.utils.log import configure_logging


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--store", type=int, default=None, help="only refresh this store id")
    args = parser.parse_args()

    load_dotenv()
    configure_logging()
    report = asyncio.run(run_cycle("manual", args.store))
    print(json.dumps(report.summary(), indent=2))


if __name__ == "__main__":
    main()
