
import argparse
import asyncio
import json
import sys
from importlib.util import find_spec
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

def _module_exists(module: str) -> bool:
    """Fast dependency check without importing heavy modules."""
    try:
        return find_spec(module) is not None
    except (ImportError, ValueError):
        return False


def check_dependencies(require_redis: bool = False) -> bool:
    """Check required dependencies.

    The Redis client library is only required when a Redis URL is set.
    """
    required = [("numpy", "numpy")]
    if require_redis:
        required.append(("redis", "redis"))

    missing = [package for module, package in required if not _module_exists(module)]
    if missing:
        print(f"Missing required packages: {', '.join(missing)}")
        print(f"Install with: pip install {' '.join(missing)}")
        return False
    return True


def load_observations(path: Path) -> tuple[list[dict], list[dict]]:
    """Read ``{"metrics": [...], "sources": [...]}`` or a bare metric list."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        return data, []
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object or list")
    return list(data.get("metrics", [])), list(data.get("sources", []))


def run_report(services, path: Path) -> dict:
    metrics, sources = load_observations(path)
    quality = services.quality
    for check in sources:
        quality.update_data_source_quality(
            str(check.get("source", "")),
            check.get("api_status", "UNKNOWN"),
            check.get("response_time_ms", 0.0),
            check.get("success_rate", 0.0),
        )
    for observation in metrics:
        name = observation.get("metric")
        if not name:
            continue
        quality.update_metric_quality(str(name), observation)
    return quality.generate_report().to_dict()


async def run_cache_stats(services) -> dict:
    await services.start()
    try:
        return services.get_stats()
    finally:
        await services.stop()


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Crypto dashboard cache and data quality core')

    parser.add_argument('--report', type=str, metavar='FILE',
                        help='Assess observations from a JSON file and print the quality report')
    parser.add_argument('--cache-stats', action='store_true',
                        help='Start the caches (Redis when configured) and print statistics')
    parser.add_argument('--config', type=str, help='JSON configuration file')
    parser.add_argument('--log-level', type=str, default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log level (overrides logging.level in the config)')
    parser.add_argument('--log-dir', type=str, help='Directory for rotating log files')

    args = parser.parse_args()

    from config.settings import load_config
    config = load_config(args.config)

    if not check_dependencies(require_redis=config.remote.enabled):
        sys.exit(1)

    from utils.logger import configure_logging, get_logger, teardown_logging
    configure_logging(
        config.logging,
        log_dir=Path(args.log_dir) if args.log_dir else None,
        level=args.log_level,
    )
    log = get_logger()

    from core.services import init_services, reset_services
    services = init_services(config)

    try:
        if args.report:
            result = run_report(services, Path(args.report))
        elif args.cache_stats:
            result = asyncio.run(run_cache_stats(services))
        else:
            parser.print_help()
            return
        print(json.dumps(result, indent=2, ensure_ascii=False))

    except KeyboardInterrupt:
        log.info("Interrupted by user")
    except (OSError, ValueError) as e:
        log.error("Error: %s", e)
        sys.exit(1)
    finally:
        reset_services()
        teardown_logging()

if __name__ == "__main__":
    main()
