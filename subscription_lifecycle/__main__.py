"""Command line entry point: ``python -m subscription_lifecycle``."""

import argparse
import os
import sys

import uvicorn

from subscription_lifecycle import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subscription-lifecycle",
        description="Subscription lifecycle and entitlement service",
    )
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"), help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")), help="Port to bind to (default: 8080)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO"),
    )
    parser.add_argument("--log-format", choices=["json", "console"], default=os.getenv("LOG_FORMAT", "json"))
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/plans.yaml"),
        help="Path to plans.yaml (default: config/plans.yaml)",
    )
    parser.add_argument("--no-sweeper", action="store_true", help="Do not start the background expiry sweeper")
    parser.add_argument("--sweep-interval", type=float, help="Seconds between expiry sweeps")
    parser.add_argument("--pubsub", action="store_true", help="Publish entitlement changes to Pub/Sub")
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the plans file, print the price table and exit",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Enable auto-reload for development",
    )
    return parser


def export_settings(args: argparse.Namespace) -> None:
    """Hand CLI choices to the app through the environment (uvicorn may fork)."""
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config
    if args.no_sweeper:
        os.environ["SWEEPER_ENABLED"] = "false"
    if args.sweep_interval is not None:
        os.environ["SWEEPER_INTERVAL_SECONDS"] = str(args.sweep_interval)
    if args.pubsub:
        os.environ["PUBSUB_ENABLED"] = "true"


def check_config(path: str) -> int:
    from subscription_lifecycle.config import Config, ConfigurationError

    try:
        config = Config(path)
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return 1

    print(f"{config.config_path}: OK")
    for plan in config.plans.plans:
        prices = ", ".join(f"{currency.value} {amount}" for currency, amount in plan.prices.items())
        print(f"  {plan.plan_type.value:<8} {plan.duration:<4} {prices}")
    for extension in config.plans.extensions:
        print(f"  extension {extension.kind.value:<9} {extension.duration}")
    return 0


def main() -> None:
    args = build_parser().parse_args()
    export_settings(args)

    if args.check_config:
        sys.exit(check_config(args.config))

    if args.log_format == "console":
        print(f"Subscription Lifecycle Service v{__version__} on {args.host}:{args.port} (config: {args.config})")

    try:
        uvicorn.run(
            "subscription_lifecycle.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,  # RequestLoggingMiddleware logs requests
        )
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
        sys.exit(0)
    except Exception as e:
        print(f"Failed to start service: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
