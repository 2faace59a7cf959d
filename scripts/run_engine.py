"""
Run the acquisition scheduler against a fixtures file and print predictions.

Usage:
    set -a && source .env && set +a
    python3 scripts/run_engine.py --fixtures fixtures.json --once
    python3 scripts/run_engine.py --fixtures fixtures.json --config engine.json --predict 1001 1002
    python3 scripts/run_engine.py --fixtures fixtures.json --preset conservative --once
    python3 scripts/run_engine.py --fixtures fixtures.json --metrics-port 9108   # run until Ctrl-C

--once runs every feed job a single time, prints predictions for every
fixture (or the --predict ids) and exits. Without it the scheduler keeps
running and predictions are printed every --report-minutes; --metrics-port
(or SCORELINE_METRICS_PORT) serves the Prometheus registry meanwhile.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scoreline.config import MODEL_PRESETS, get_settings, load_settings_file
from scoreline.ml.engine import MatchNotFound
from scoreline.reference import InMemoryMatchDirectory
from scoreline.service import ScorelineService, build_service
from scoreline.telemetry import get_metrics_text, start_metrics_server
from scoreline.telemetry.sentry import init_sentry

logger = logging.getLogger("run_engine")


def parse_args():
    parser = argparse.ArgumentParser(description="Acquire feeds and predict scorelines")
    parser.add_argument("--fixtures", required=True,
                        help="JSON file with {\"matches\": [...]} reference data")
    parser.add_argument("--config", default=None,
                        help="JSON settings file (default: environment variables)")
    parser.add_argument("--once", action="store_true",
                        help="Run every feed job once, print predictions and exit")
    parser.add_argument("--predict", type=int, nargs="*", default=None,
                        help="Match ids to predict (default: every fixture)")
    parser.add_argument("--report-minutes", type=float, default=30.0,
                        help="Prediction report interval when running continuously")
    parser.add_argument("--preset", choices=sorted(MODEL_PRESETS), default=None,
                        help="Apply a named model tuning on top of the settings")
    parser.add_argument("--metrics-port", type=int, default=None,
                        help="Serve Prometheus metrics on this port (default: METRICS_PORT)")
    parser.add_argument("--dump-metrics", action="store_true",
                        help="With --once, print the Prometheus exposition before exiting")
    return parser.parse_args()


def print_predictions(service: ScorelineService, match_ids: list[int]) -> None:
    for match_id in match_ids:
        try:
            result = service.predict_scores(match_id)
        except MatchNotFound as e:
            logger.error(str(e))
            continue
        print(json.dumps(result.to_dict(), indent=2))


async def main():
    args = parse_args()
    settings = load_settings_file(args.config) if args.config else get_settings()
    if args.preset:
        settings = settings.with_preset(args.preset)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    init_sentry()

    metrics_port = args.metrics_port or settings.METRICS_PORT
    if metrics_port and not args.once:
        start_metrics_server(metrics_port)

    directory = InMemoryMatchDirectory.from_json_file(args.fixtures)
    service = build_service(settings, directory)
    now = service.clock.now()
    match_ids = args.predict or [
        m.match_id for m in directory.upcoming_matches(now, now + timedelta(days=366))
    ]

    try:
        if args.once:
            results = await service.scheduler.run_all()
            for source, metrics in results.items():
                logger.info("[%s] %s", source, metrics)
            print_predictions(service, match_ids)
            print(json.dumps(service.get_data_availability(), indent=2))
            if args.dump_metrics:
                body, _ = get_metrics_text()
                print(body.decode("utf-8"))
            return

        service.scheduler.start()
        while True:
            await asyncio.sleep(args.report_minutes * 60)
            print_predictions(service, match_ids)
    finally:
        await service.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
