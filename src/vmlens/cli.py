"""CLI entrypoint using Typer."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from vmlens.collectors.facade import PerformanceCollector
from vmlens.core.config import AppConfig
from vmlens.core.errors import ConfigError, VmLensError
from vmlens.files.access import LocalFileAccess
from vmlens.llm.client import LLMClient
from vmlens.privacy.redactor import DataRedactor, PrivacyLevel
from vmlens.privacy.summary import summarize
from vmlens.protocol.client import VmServiceClient

app = typer.Typer(help="Runtime performance telemetry for VM service targets")

T = TypeVar("T")


def _privacy_level(value: Optional[str], cfg: AppConfig) -> PrivacyLevel:
    try:
        return PrivacyLevel((value or cfg.privacy.level).lower())
    except ValueError as exc:
        raise typer.BadParameter(f"Unknown privacy level: {value}") from exc


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


def _load_config(path: Optional[str], uri: Optional[str], workspace: Optional[str]) -> AppConfig:
    try:
        cfg = AppConfig.from_yaml(path) if path else AppConfig.from_raw({})
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if uri:
        cfg.connection.vm_service_uri = uri
    if workspace:
        cfg.source.workspace_root = Path(workspace)
    if not cfg.connection.vm_service_uri:
        raise typer.BadParameter("A VM service URI is required (--uri or connection.vm_service_uri)")
    return cfg


def _run(cfg: AppConfig, action: Callable[[PerformanceCollector], Awaitable[T]]) -> T:
    async def _main() -> T:
        file_access = LocalFileAccess(cfg.source.workspace_root) if cfg.source.workspace_root else None
        async with VmServiceClient(
            cfg.connection.vm_service_uri, cfg.connection.call_timeout_sec
        ) as client:
            collector = PerformanceCollector(client, cfg, file_access=file_access)
            await collector.initialize()
            return await action(collector)

    try:
        return asyncio.run(_main())
    except VmLensError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _echo(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


@app.command()
def snapshot(
    uri: Optional[str] = typer.Option(None, help="VM service websocket URI"),
    config: Optional[str] = typer.Option(None, help="Path to config YAML"),
    workspace: Optional[str] = typer.Option(None, help="Workspace root for source lookups"),
    privacy: Optional[str] = typer.Option(None, help="maximum | partial | minimal"),
    raw: bool = typer.Option(False, help="Print the redacted snapshot instead of the summary"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    # Demo: vmlens snapshot --uri ws://127.0.0.1:8181/abc=/ws --privacy partial
    _setup_logging(verbose)
    cfg = _load_config(config, uri, workspace)
    level = _privacy_level(privacy, cfg)
    snap = _run(cfg, lambda c: c.collect_snapshot())
    if raw:
        _echo(DataRedactor(level).redact(snap).to_dict())
    else:
        _echo(summarize(snap, level, enhanced=False))


@app.command()
def metrics(
    uri: Optional[str] = typer.Option(None, help="VM service websocket URI"),
    config: Optional[str] = typer.Option(None, help="Path to config YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    # Demo: vmlens metrics --uri ws://127.0.0.1:8181/abc=/ws
    _setup_logging(verbose)
    cfg = _load_config(config, uri, None)
    snap = _run(cfg, lambda c: c.collect_snapshot())
    _echo([m.to_dict() for m in snap.to_metrics()])


@app.command("enhance-class")
def enhance_class(
    class_name: str = typer.Argument(..., help="Class to drill into"),
    uri: Optional[str] = typer.Option(None, help="VM service websocket URI"),
    config: Optional[str] = typer.Option(None, help="Path to config YAML"),
    workspace: Optional[str] = typer.Option(None, help="Workspace root for source lookups"),
    privacy: Optional[str] = typer.Option(None, help="maximum | partial | minimal"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    # Demo: vmlens enhance-class OrderItem --uri ws://127.0.0.1:8181/abc=/ws --workspace .
    _setup_logging(verbose)
    cfg = _load_config(config, uri, workspace)
    level = _privacy_level(privacy, cfg)

    async def _action(collector: PerformanceCollector):
        snap = await collector.collect_snapshot()
        if snap.memory is None:
            return None
        match = next((a for a in snap.memory.top_allocations if a.class_name == class_name), None)
        if match is None:
            return None
        return await collector.enhance_class(match)

    sample = _run(cfg, _action)
    if sample is None:
        typer.echo(f"Class {class_name} not found among live allocations", err=True)
        raise typer.Exit(code=1)
    _echo(DataRedactor(level).redact_allocation(sample).to_dict())


@app.command("cpu-status")
def cpu_status(
    uri: Optional[str] = typer.Option(None, help="VM service websocket URI"),
    config: Optional[str] = typer.Option(None, help="Path to config YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    _setup_logging(verbose)
    cfg = _load_config(config, uri, None)
    status = _run(cfg, lambda c: c.check_cpu_status())
    _echo(status.to_dict())


@app.command()
def analyze(
    uri: Optional[str] = typer.Option(None, help="VM service websocket URI"),
    config: Optional[str] = typer.Option(None, help="Path to config YAML"),
    workspace: Optional[str] = typer.Option(None, help="Workspace root for source lookups"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    # Demo: vmlens analyze --config configs/app.yaml
    # Collects a snapshot, enhances the top user classes and functions, then asks the LLM.
    _setup_logging(verbose)
    cfg = _load_config(config, uri, workspace)

    async def _action(collector: PerformanceCollector):
        snap = await collector.collect_snapshot()
        if snap.cpu is not None:
            cpu = await collector.enhance_functions(snap.cpu)
            snap = snap if cpu is None else replace(snap, cpu=cpu)
        if snap.memory is not None:
            user = [a for a in snap.memory.top_allocations if a.is_user_class][:3]
            enhanced = {}
            for sample in user:
                result = await collector.enhance_class(sample)
                if result is not None:
                    enhanced[sample.class_name] = result
            allocations = [enhanced.get(a.class_name, a) for a in snap.memory.top_allocations]
            snap = replace(snap, memory=replace(snap.memory, top_allocations=allocations))
        return snap

    snap = _run(cfg, _action)
    summary = summarize(snap, cfg.privacy.level)
    client = LLMClient(cfg.llm)
    try:
        result = client.analyze(summary)
    finally:
        client.close()
    _echo(result.to_dict())


if __name__ == "__main__":
    app()
