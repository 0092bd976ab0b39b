import argparse
import sys
from typing import List, Optional, TextIO

import structlog

from log_shipper.clients.credentials import ConfiguredCredentialsProvider
from log_shipper.config.manager import ShipperYamlConfig, get_config
from log_shipper.config.models.sentry import initialize_sentry
from log_shipper.errors import ConfigError, ShipperError
from log_shipper.settings import (
    CloudwatchLogsConfiguration,
    InMemorySettingsStore,
    Operator,
    SettingsStore,
    YamlFileSettingsStore,
)
from log_shipper.shipper.pipeline import LogShippingPipeline
from log_shipper.shipper.retry import RetryController
from log_shipper.utils.logger import configure_logging
from log_shipper.utils.time_conversion import now_milliseconds

logger = structlog.get_logger(__name__)

CLI_OPERATOR = Operator(name="cli", can_administer=True)


def build_configuration(config: ShipperYamlConfig) -> CloudwatchLogsConfiguration:
    credentials = ConfiguredCredentialsProvider(
        config.credentials.model_copy(
            update={"region": config.region, "credentials_id": config.credentials_id}
        )
    )
    store: SettingsStore = (
        YamlFileSettingsStore(config.settings_file)
        if config.settings_file
        else InMemorySettingsStore()
    )
    configuration = CloudwatchLogsConfiguration(store, credentials)

    if not configuration.log_group_name and config.cloudwatch.log_group_name.strip():
        configuration.set_log_group_name(config.cloudwatch.log_group_name)
    return configuration


def build_pipeline(
    config: ShipperYamlConfig, configuration: CloudwatchLogsConfiguration
) -> LogShippingPipeline:
    return LogShippingPipeline(
        configuration.get_logs_client(),
        buffer_config=config.buffer,
        retry=RetryController(config.retry),
    )


def run_validate(
    configuration: CloudwatchLogsConfiguration, args: argparse.Namespace
) -> int:
    result = configuration.validate(
        CLI_OPERATOR,
        args.log_group or configuration.log_group_name,
        args.region or configuration.credentials.default_region,
        args.credentials_id or configuration.credentials.default_credentials_id,
    )
    print(f"{result.kind.value.upper()}: {result.message}")
    return 1 if result.is_error else 0


def run_set_log_group(
    configuration: CloudwatchLogsConfiguration, args: argparse.Namespace
) -> int:
    try:
        configuration.set_log_group_name(args.name)
    except ConfigError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return 2
    print(f"Log group name set to {configuration.log_group_name}")
    return 0


def ship_lines(
    pipeline: LogShippingPipeline,
    stream_name: str,
    lines: TextIO,
    tee: Optional[TextIO] = None,
) -> int:
    pipeline.start()
    last_timestamp = 0
    shipped = 0
    try:
        for line in lines:
            if tee is not None:
                tee.write(line)
            # Wall clock may step backwards; never send an earlier timestamp
            last_timestamp = max(now_milliseconds(), last_timestamp)
            pipeline.append(stream_name, line.rstrip("\r\n"), last_timestamp)
            shipped += 1
        pipeline.flush()
    finally:
        report = pipeline.shutdown(timeout=30)

    logger.info(
        f"Read {shipped} lines",
        log_group_name=pipeline.log_group_name,
        log_stream_name=stream_name,
        undelivered_events=report.undelivered_events,
        dropped_events=report.dropped_events,
    )
    for name, error in report.paused.items():
        print(f"ERROR: stream {name} paused: {error.message}", file=sys.stderr)
    return 0 if report.clean else 1


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="log-shipper",
        description="Ship CI build logs to Amazon CloudWatch Logs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser(
        "validate", help="Check credentials, read access and write permissions"
    )
    validate.add_argument("--log-group", default=None)
    validate.add_argument("--region", default=None)
    validate.add_argument("--credentials-id", default=None)

    set_log_group = subparsers.add_parser(
        "set-log-group", help="Persist the log group name"
    )
    set_log_group.add_argument("name")

    ship = subparsers.add_parser("ship", help="Ship lines read from stdin")
    ship.add_argument("--stream", required=True, help="Log stream name (a build id)")
    ship.add_argument(
        "--tee", action="store_true", help="Echo shipped lines to stdout"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = get_config()
    configure_logging(config.logging)
    if not config.secrets.use_secrets_manager:
        logger.warning(
            "Secrets manager is disabled, its use is encouraged for AWS keys in production"
        )

    if config.sentry:
        initialize_sentry(config.sentry, config.cloudwatch.log_group_name)

    try:
        configuration = build_configuration(config)
        if args.command == "validate":
            return run_validate(configuration, args)
        if args.command == "set-log-group":
            return run_set_log_group(configuration, args)

        pipeline = build_pipeline(config, configuration)
        return ship_lines(
            pipeline,
            config.cloudwatch.stream_name(args.stream),
            sys.stdin,
            tee=sys.stdout if args.tee else None,
        )
    except ShipperError as e:
        logger.error(f"Log shipper failed: {e.message}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
