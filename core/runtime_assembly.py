"""Runtime assembly helpers: capture client, pipeline, outputs, and wiring."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from capture.base import BaseCaptureClient, create_capture_client
from core.config.schema import LoadedConfig
from core.config.settings import PipelineSettings, build_pipeline_settings
from core.lifecycle import LoopRunner
from core.pipeline import CapturePipeline
from output.manager import NotificationFanout, ResultStore
from output.overlay import BroadcastChannel

from .runtime import AppContext, SystemRuntime


@dataclass
class RuntimeBuildConfig:
    data_dir: str
    capture_client: str = "obs"
    history_size: int = 20
    write_csv: bool = True
    max_concurrent: int = 0
    enable_overlay_server: bool = True
    overlay_host: str = "0.0.0.0"
    overlay_port: int = 3456


def build_runtime_config_from_loaded_config(cfg: LoadedConfig) -> RuntimeBuildConfig:
    return RuntimeBuildConfig(
        data_dir=cfg.runtime.data_dir,
        capture_client=cfg.capture.client,
        history_size=cfg.runtime.history_size,
        write_csv=cfg.runtime.write_csv,
        max_concurrent=cfg.capture.max_concurrent,
        enable_overlay_server=bool(cfg.overlay.enabled),
        overlay_host=cfg.overlay.host,
        overlay_port=cfg.overlay.port,
    )


def _build_result_store(cfg: RuntimeBuildConfig) -> ResultStore:
    return ResultStore(
        base_dir=cfg.data_dir,
        max_records=max(1, int(cfg.history_size)),
        write_csv=cfg.write_csv,
    )


def _build_pipeline(
    cfg: RuntimeBuildConfig,
    *,
    client: BaseCaptureClient,
    channel: BroadcastChannel,
    store: ResultStore,
) -> CapturePipeline:
    return CapturePipeline(
        client,
        NotificationFanout(),
        channel,
        store,
        max_concurrent=cfg.max_concurrent,
    )


def _wire_overlay_server(
    cfg: RuntimeBuildConfig,
    *,
    app_context: AppContext,
    loop_runner: LoopRunner,
):
    if not cfg.enable_overlay_server:
        return None
    from output.overlay import OverlayServer

    return OverlayServer(
        cfg.overlay_host,
        cfg.overlay_port,
        app_context,
        loop_runner=loop_runner,
    )


def build_runtime(
    settings: PipelineSettings,
    *,
    config: RuntimeBuildConfig,
    client: BaseCaptureClient | None = None,
    loop_runner: LoopRunner | None = None,
    clock_ms: Callable[[], float] | None = None,
) -> SystemRuntime:
    loop_runner = loop_runner or LoopRunner()
    cfg = config
    client = client or create_capture_client(cfg.capture_client, settings.output_dir)
    channel = BroadcastChannel()
    store = _build_result_store(cfg)
    pipeline = _build_pipeline(cfg, client=client, channel=channel, store=store)
    app_context = AppContext(
        settings,
        client=client,
        pipeline=pipeline,
        channel=channel,
        results=store,
        loop_runner=loop_runner,
        clock_ms=clock_ms,
    )
    overlay_server = _wire_overlay_server(
        cfg, app_context=app_context, loop_runner=loop_runner
    )
    return SystemRuntime(app_context, loop_runner, overlay_server=overlay_server)


def build_runtime_from_loaded_config(
    cfg: LoadedConfig,
    *,
    client: BaseCaptureClient | None = None,
    loop_runner: LoopRunner | None = None,
) -> SystemRuntime:
    return build_runtime(
        build_pipeline_settings(cfg),
        config=build_runtime_config_from_loaded_config(cfg),
        client=client,
        loop_runner=loop_runner,
    )


__all__ = [
    "RuntimeBuildConfig",
    "build_runtime",
    "build_runtime_config_from_loaded_config",
    "build_runtime_from_loaded_config",
]
