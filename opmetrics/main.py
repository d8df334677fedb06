"""Command line entry point: load config, start the flush loop and the control API."""
import argparse
import json
import logging
import signal
import sys
import threading
from typing import List, Optional, TextIO

from opmetrics.config import Config, load_config
from opmetrics.control_api import ControlAPI
from opmetrics.engine import MetricsEngine, run_engine_thread

TEXT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("urllib3", "uvicorn.access", "opentelemetry")


class JsonFormatter(logging.Formatter):
    """One JSON object per record; tracebacks go in ``exc_info``."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, LOG_DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)


def setup_logging(log_level: str, log_format: str, stream: Optional[TextIO] = None):
    """Replace root handlers with one stream handler in the configured format."""
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[handler],
        force=True
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opmetrics",
        description="Aggregate per-index operation latency and resource usage metrics"
    )
    parser.add_argument("--config", "-c", required=True, help="Path to configuration YAML file")
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Bind address for the control API (default: %(default)s)"
    )
    return parser


def _log_startup(logger: logging.Logger, config: Config, config_path: str):
    exporters = config.exporters
    logger.info(f"opmetrics starting with configuration {config_path}")
    logger.info(
        f"flush_interval_s={config.global_.flush_interval_s} "
        f"relative_accuracy={config.sketch.relative_accuracy} "
        f"max_index_count={config.classifier.max_index_count}"
    )
    logger.info(
        f"prometheus={'on' if exporters.prometheus.enabled else 'off'} "
        f"otel={'on' if exporters.otel.enabled else 'off'}"
    )


def _install_signal_handlers(engine: MetricsEngine, logger: logging.Logger):
    def shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        engine.stop()
        sys.exit(0)

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, shutdown)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"opmetrics: cannot load {args.config}: {e}", file=sys.stderr)
        return 2

    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)
    _log_startup(logger, config, args.config)

    try:
        engine = MetricsEngine(config)
        engine.start_exporters()
    except Exception as e:
        logger.error(f"Engine initialization failed: {e}", exc_info=True)
        return 1

    flush_thread = threading.Thread(
        target=run_engine_thread,
        args=(engine,),
        name="opmetrics-flush",
        daemon=True
    )
    flush_thread.start()
    _install_signal_handlers(engine, logger)

    try:
        ControlAPI(engine).run(host=args.host, port=config.global_.control_api_port)
    except Exception as e:
        logger.error(f"Control API stopped: {e}", exc_info=True)
        return 1
    finally:
        engine.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
