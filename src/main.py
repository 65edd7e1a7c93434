"""
Entrypoint: build the warehouse once, or only run the data checks.
  python -m src.main
  python -m src.main run --start-date 2024-01-01 --end-date 2024-01-31
  python -m src.main check

Settings come from AIRBNB_* environment variables; flags override them.
Orchestration (e.g. daily schedule) is done by Airflow
"""
import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

EXIT_OK = 0
EXIT_CHECKS_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_MISSING_INPUT = 3

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m src.main",
        description="Airbnb reviews warehouse: source -> dim -> fct_reviews -> mart -> checks",
    )
    parser.add_argument("command", nargs="?", default="run", choices=["run", "check"])
    parser.add_argument("--start-date", help="Inclusive first review_date to load (YYYY-MM-DD)")
    parser.add_argument("--end-date", help="Inclusive last review_date to load (YYYY-MM-DD)")
    parser.add_argument("--window-policy", help="high_water_mark (default) or full_history")
    parser.add_argument("--min-review-rows", help="Minimum rows fct_reviews must hold")
    parser.add_argument("--as-of", help="Date the default window stops at (default: today, UTC)")
    parser.add_argument("--user-name", help="Operator name written to the run log")
    parser.add_argument("--no-publish", action="store_true", help="Skip publishing marts to output/")
    parser.add_argument("--log-level", default="INFO", type=str.upper, choices=LOG_LEVELS)
    return parser


def main(argv: list[str] | None = None) -> int:
    from src.logging_config import get_logger, setup_logging
    from src.airbnb.config import ConfigError, LoaderConfig
    from src.airbnb.run import check, run

    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    logger = get_logger("src.main")

    try:
        config = LoaderConfig.from_env().override({
            "start_date": args.start_date,
            "end_date": args.end_date,
            "window_policy": args.window_policy,
            "min_review_rows": args.min_review_rows,
            "as_of": args.as_of,
            "user_name": args.user_name,
        })
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR

    try:
        if args.command == "check":
            results = check(config)
        else:
            results = run(config, publish_to_output=not args.no_publish).checks
    except FileNotFoundError as exc:
        if args.command == "check":
            logger.error("Warehouse not built, run the pipeline first: %s", exc)
        else:
            logger.error("Missing input: %s", exc)
        return EXIT_MISSING_INPUT

    failed = [r for r in results if not r.passed]
    for r in failed:
        logger.error("Data test failed: %s on %s (%d rows)", r.name, r.model, r.failures)
    return EXIT_CHECKS_FAILED if failed else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
