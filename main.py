# -- coding: utf-8 --

import argparse
import json
import logging
import logging.handlers
import os
import time

from capture import CaptureError
from core.config import (
    ConfigError,
    build_pipeline_settings,
    load_config,
    validate_config,
)
from core.contracts import CaptureSuccess
from core.runtime_assembly import build_runtime_from_loaded_config
from trigger import build_chat_trigger_config, create_trigger


def parse_args():
    p = argparse.ArgumentParser(
        description="SnapRuntime remote screenshot service (config-driven)",
    )
    p.add_argument(
        "--config-dir", default="config", help="Directory containing main_*.yaml"
    )
    p.add_argument("--verbose", action="store_true", help="Debug log")
    p.add_argument(
        "--log-level", default="", help="Override log level (debug/info/warning/error)"
    )
    p.add_argument(
        "--capture-once",
        action="store_true",
        help="Run one capture pipeline, fan it out, then exit",
    )
    p.add_argument(
        "--list-sources",
        action="store_true",
        help="Print scenes and sources reported by the rendering host, then exit",
    )
    return p.parse_args()


def setup_logging(verbose: bool, log_level: str = "", log_dir: str = ""):
    if verbose:
        level = logging.DEBUG
    else:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "warn": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        level = level_map.get(str(log_level or "").strip().lower(), logging.INFO)
    # Use UTC for all %(asctime)s timestamps in logs.
    logging.Formatter.converter = time.gmtime
    fmt = "%(asctime)sZ [%(levelname)s] %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                os.path.join(log_dir, "snap_runtime.log"),
                when="midnight",
                backupCount=14,
                encoding="utf-8",
                utc=True,
            )
        )
    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)
    if not verbose:
        # Per-request access lines from the overlay server.
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def main():
    args = parse_args()
    setup_logging(args.verbose, args.log_level)
    try:
        cfg = load_config(args.config_dir)
        validate_config(cfg)
    except ConfigError as e:
        logging.error("Config invalid: %s", e)
        raise SystemExit(1) from e
    # Config-driven log level (unless overridden by CLI).
    if args.verbose or args.log_level:
        setup_logging(args.verbose, args.log_level, cfg.runtime.log_dir)
    else:
        setup_logging(False, cfg.runtime.log_level, cfg.runtime.log_dir)

    settings = build_pipeline_settings(cfg)
    logging.info(
        "Starting: capture=%s obs=%s source=%r overlay=%s chat=%s webhook=%s runtime=%s",
        cfg.capture.client,
        settings.connection.url,
        settings.capture.source,
        f"{cfg.overlay.host}:{cfg.overlay.port}" if cfg.overlay.enabled else "off",
        f"#{cfg.chat.channel}" if cfg.chat.enabled else "off",
        "on" if settings.webhook.enabled else "off",
        f"{cfg.runtime.max_runtime_s}s" if cfg.runtime.max_runtime_s else "unlimited",
    )
    logging.info("Config files: main=%s", cfg.paths.get("main"))

    if args.capture_once or args.list_sources:
        raise SystemExit(_run_once(cfg, list_sources=args.list_sources))

    try:
        runtime = build_runtime_from_loaded_config(cfg)

        triggers = []
        if cfg.chat.enabled:
            triggers.append(
                create_trigger(
                    cfg.chat.type,
                    build_chat_trigger_config(cfg),
                    runtime.on_chat_message,
                    loop_runner=runtime.loop_runner,
                )
            )
            logging.info("Chat trigger enabled: %s", cfg.chat.type)
        else:
            logging.info("Chat trigger disabled by config; manual capture only")

        runtime.start(triggers=triggers)
        runtime.run(
            runtime_limit_s=cfg.runtime.max_runtime_s
            if cfg.runtime.max_runtime_s > 0
            else None
        )
        logging.info("Done")
    except KeyboardInterrupt:
        logging.info("Service STOPPED by user (Ctrl+C)")
    except Exception:
        logging.exception("Error")
        raise


def _run_once(cfg, *, list_sources: bool) -> int:
    runtime = build_runtime_from_loaded_config(cfg)
    # One-shot modes never start the overlay server.
    runtime.overlay_server = None
    try:
        if list_sources:
            try:
                sources = runtime.list_sources()
            except CaptureError as e:
                logging.error("Listing sources failed (%s): %s", e.reason.value, e)
                return 2
            print(json.dumps(sources, indent=2, ensure_ascii=False))
            return 0
        result = runtime.manual_capture()
        if isinstance(result, CaptureSuccess):
            logging.info("Capture saved: %s", result.image_path)
            return 0
        logging.error("Capture failed (%s): %s", result.reason.value, result.message)
        return 2
    finally:
        runtime.stop()


if __name__ == "__main__":
    main()
