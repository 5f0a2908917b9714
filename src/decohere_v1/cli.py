from __future__ import annotations

from pathlib import Path
from typing import Any, List, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from .audit import AuditLog
from .bundle import load_bundle
from .cache_manager import CacheManager
from .cache_store import CacheStore
from .config import Settings
from .errors import DecohereError
from .fuzz import FuzzGenerator
from .ledger.journal import AuditJournal
from .log import configure_logging
from .oracle_api import (
    BaseOracle,
    OpenAIOracle,
    ReplayOracle,
    StaticOracle,
    SubprocessOracle,
)
from .orchestrator.session import DecohereSession
from .registry import HelperRegistry, PredicateRegistry
from .schemas import export_schemas
from .utils import canonical_dumps, read_json

app = typer.Typer(help="DECOHERE v1 CLI")
console = Console()

BUNDLE_FILE_OPTION = typer.Option(..., "--bundle-file", exists=True)
CONFIG_OPTION = typer.Option(None, "--config")
CACHE_DIR_OPTION = typer.Option(None, "--cache-dir", file_okay=False)
ORACLE_OPTION = typer.Option("openai", "--oracle")
STATIC_RESPONSE_OPTION = typer.Option(None, "--static-response")
REPLAY_FILE_OPTION = typer.Option(None, "--replay-file")
CMD_OPTION = typer.Option(None, "--cmd")
JOURNAL_OPTION = typer.Option(..., "--journal", exists=True)
JSON_OPTION = typer.Option(False, "--json")
COUNT_OPTION = typer.Option(10, "--count", min=1)
SEED_OPTION = typer.Option(None, "--seed")
SCHEMA_OUT_OPTION = typer.Option(Path("schemas"), "--out-dir")

cache_app = typer.Typer(help="Cache commands")
audit_app = typer.Typer(help="Audit log commands")
registry_app = typer.Typer(help="Predicate registry commands")
schema_app = typer.Typer(help="Schema utilities")


@app.callback()
def main() -> None:
    pass


def _load_settings(config: Optional[Path], cache_dir: Optional[Path] = None) -> Settings:
    data: dict[str, Any] = {}
    if config is not None:
        raw = read_json(config)
        if not isinstance(raw, dict):
            raise typer.BadParameter(f"config must be a JSON object: {config}")
        data.update(raw)
    if cache_dir is not None:
        data["cache_dir"] = str(cache_dir)
    settings = Settings(**data)
    configure_logging(settings.log_level)
    return settings


def _load_static_response(value: str) -> str:
    path = Path(value)
    if path.exists():
        return path.read_text(encoding="utf-8")
    return value


def _build_oracle(
    oracle_kind: str,
    settings: Settings,
    static_responses: Optional[List[str]],
    replay_file: Optional[Path],
    cmd: Optional[List[str]],
) -> BaseOracle:
    if oracle_kind == "static":
        if not static_responses:
            raise typer.BadParameter("missing --static-response for static oracle")
        return StaticOracle([_load_static_response(item) for item in static_responses])
    if oracle_kind == "replay":
        if replay_file is None:
            raise typer.BadParameter("missing --replay-file for replay oracle")
        return ReplayOracle(replay_file)
    if oracle_kind == "subprocess":
        if not cmd:
            raise typer.BadParameter("missing --cmd for subprocess oracle")
        return SubprocessOracle(cmd, timeout_s=settings.oracle_timeout_s)
    if oracle_kind == "openai":
        return OpenAIOracle(
            settings.oracle_model,
            api_key_env=settings.openai_api_key_env,
            timeout_s=settings.oracle_timeout_s,
        )
    raise typer.BadParameter(f"unknown oracle: {oracle_kind}")


def _fail(exc: DecohereError) -> NoReturn:
    console.print(f"[red]error:[/red] {exc}")
    raise typer.Exit(code=1)


@app.command("synth")
def synth_cmd(
    bundle_file: Path = BUNDLE_FILE_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
    oracle_kind: str = ORACLE_OPTION,
    static_response: Optional[List[str]] = STATIC_RESPONSE_OPTION,
    replay_file: Optional[Path] = REPLAY_FILE_OPTION,
    cmd: Optional[List[str]] = CMD_OPTION,
) -> None:
    settings = _load_settings(config, cache_dir)
    oracle = _build_oracle(oracle_kind, settings, static_response, replay_file, cmd)
    try:
        bundle = load_bundle(bundle_file)
        with DecohereSession(settings, oracle) as session:
            outcome = session.materialize_bundle(bundle)
    except DecohereError as exc:
        _fail(exc)
    table = Table(title="Synthesis Summary")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("identity", outcome.identity)
    table.add_row("value", canonical_dumps(outcome.value).decode("utf-8"))
    table.add_row("from_cache", str(outcome.from_cache))
    table.add_row("attempts", str(outcome.attempts))
    table.add_row("confidence", "-" if outcome.confidence is None else f"{outcome.confidence:.3f}")
    table.add_row("heuristics", ", ".join(item.name for item in outcome.heuristics) or "-")
    console.print(table)


@app.command("fuzz")
def fuzz_cmd(
    bundle_file: Path = BUNDLE_FILE_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
    count: int = COUNT_OPTION,
    seed: Optional[int] = SEED_OPTION,
) -> None:
    settings = _load_settings(config, cache_dir)
    try:
        bundle = load_bundle(bundle_file)
    except DecohereError as exc:
        _fail(exc)
    store = CacheStore(
        settings.cache_path(),
        reserved=settings.reserved_cache_files(),
        step_limit=settings.predicate_step_limit,
    )
    entry = store.load(bundle.identity)
    if entry is None:
        console.print(f"[red]error:[/red] no cached value for {bundle.identity!r}; run synth first")
        raise typer.Exit(code=1)
    generator = FuzzGenerator.from_cache_entry(
        entry,
        bundle.specification().must,
        seed=settings.fuzz_seed if seed is None else seed,
    )
    values = generator.generate_n(count)
    for value in values:
        console.print(canonical_dumps(value).decode("utf-8"), soft_wrap=True)
    if len(values) < count:
        console.print(f"[yellow]only {len(values)} distinct value(s) satisfied the constraints[/yellow]")


@cache_app.command("audit")
def cache_audit_cmd(
    config: Optional[Path] = CONFIG_OPTION,
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    settings = _load_settings(config, cache_dir)
    audit_log = AuditLog.load(settings.audit_path())
    manager = CacheManager(
        settings.cache_path(),
        audit_log,
        reserved=settings.reserved_cache_files(),
        confidence_threshold=settings.confidence_threshold,
        high_confidence_threshold=settings.high_confidence_threshold,
    )
    report = manager.generate_regeneration_report(manager.audit_cache_entries())
    if as_json:
        console.print_json(canonical_dumps(report.to_json()).decode("utf-8"))
        return
    table = Table(title="Regeneration Report")
    table.add_column("Type")
    table.add_column("Action")
    table.add_column("Reason")
    for detail in report.details:
        table.add_row(detail.type_text, detail.action, detail.reason)
    console.print(table)
    console.print(
        {
            "total": report.total_cache_entries,
            "preserved": report.entries_preserved,
            "regenerate": report.entries_marked_for_regeneration,
            "high_confidence_preserved": report.high_confidence_preserved,
            "average_confidence": round(report.average_confidence, 4),
        }
    )


@cache_app.command("health")
def cache_health_cmd(
    config: Optional[Path] = CONFIG_OPTION,
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
) -> None:
    settings = _load_settings(config, cache_dir)
    manager = CacheManager(
        settings.cache_path(),
        AuditLog.load(settings.audit_path()),
        reserved=settings.reserved_cache_files(),
        confidence_threshold=settings.confidence_threshold,
        high_confidence_threshold=settings.high_confidence_threshold,
    )
    metrics = manager.get_cache_health_metrics(manager.audit_cache_entries())
    table = Table(title="Cache Health")
    table.add_column("Bucket")
    table.add_column("Count")
    table.add_column("Percent")
    for bucket in ("excellent", "good", "acceptable", "poor"):
        count = getattr(metrics, bucket)
        percent = getattr(metrics, f"percentage_{bucket}")
        table.add_row(bucket, str(count), f"{percent:.1f}%")
    table.add_row("total", str(metrics.total), "")
    console.print(table)


@audit_app.command("summary")
def audit_summary_cmd(
    config: Optional[Path] = CONFIG_OPTION,
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
) -> None:
    settings = _load_settings(config, cache_dir)
    summary = AuditLog.load(settings.audit_path()).get_summary()
    console.print(summary.to_json())


@audit_app.command("verify")
def audit_verify_cmd(journal: Path = JOURNAL_OPTION) -> None:
    ok, message = AuditJournal.verify_chain(journal)
    console.print({"ok": ok, "message": message})
    if not ok:
        raise typer.Exit(code=1)


@registry_app.command("list")
def registry_list_cmd(
    config: Optional[Path] = CONFIG_OPTION,
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
    helpers: bool = typer.Option(False, "--helpers"),
) -> None:
    settings = _load_settings(config, cache_dir)
    if helpers:
        helper_registry = HelperRegistry(settings.helper_registry_path())
        table = Table(title="Helper Registry")
        table.add_column("Id")
        table.add_column("Name")
        table.add_column("Category")
        table.add_column("Signature")
        for helper in helper_registry.sorted_entries():
            table.add_row(helper.id[:12], helper.name, helper.category, helper.signature)
        console.print(table)
        return
    registry = PredicateRegistry(settings.registry_path())
    table = Table(title="Predicate Registry")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Description")
    for entry in registry.sorted_entries():
        table.add_row(entry.id[:12], entry.name, entry.description)
    console.print(table)


@schema_app.command("export")
def schema_export_cmd(out_dir: Path = SCHEMA_OUT_OPTION) -> None:
    export_schemas(str(out_dir))
    console.print({"schemas": str(out_dir)})


app.add_typer(cache_app, name="cache")
app.add_typer(audit_app, name="audit")
app.add_typer(registry_app, name="registry")
app.add_typer(schema_app, name="schema")
