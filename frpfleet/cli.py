"""Command line interface for frpfleet."""

from __future__ import annotations

import json
import sys
import time
from difflib import get_close_matches
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

import click
import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table
from typer.core import TyperGroup

from . import __version__
from .config import load_config, resolve_frp_config_dir, resolve_status_ttl
from .logging_utils import LOG_LEVELS, configure_logging, resolve_log_level
from .output import format_endpoint, format_optional, format_status_icon, format_timestamp
from .services.config_service import apply_config_updates, get_config_snapshot
from .services.dispatch_service import BatchReport
from .services.extract_service import FieldExtractionError
from .services.filter_service import (
    FilterKind,
    apply_filters,
    delete_preset,
    list_presets,
    load_preset,
    parse_filter,
    save_preset,
    select_configs,
)
from .services.index_service import (
    IndexStatus,
    clear_index,
    incremental_sync,
    index_file,
    query_aggregate,
    rebuild,
    verify_index,
)
from .services.lifecycle_service import LifecycleAction, bulk_service_action, plan_lifecycle
from .services.probe_service import probe_configs, probe_targets
from .services.status_service import build_status_cache
from .services.tag_service import (
    UntaggedTargetError,
    add_tag,
    bulk_tag,
    list_all_tags,
    list_tags,
    remove_tag,
)
from .services.update_service import (
    BulkUpdateError,
    UpdateResult,
    bulk_update_field,
    bulk_update_from_file,
    list_backups,
    restore_backup,
)
from .store import ConfigEntry, IndexUnavailableError
from .text import Messages, Styles
from .utils import format_path

console = Console()


class DefaultSearchGroup(TyperGroup):
    """Treat unknown subcommands as search queries."""

    def resolve_command(
        self,
        ctx: click.Context,
        args: list[str],
    ) -> tuple[str | None, click.Command | None, list[str]]:
        original_args = list(args)
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError:
            if not original_args:
                raise
            token = original_args[0]
            if token.startswith("-"):
                raise
            if self.suggest_commands and self.commands:
                matches = get_close_matches(
                    token,
                    list(self.commands.keys()),
                    cutoff=0.8,
                )
                if matches:
                    raise
            command = self.get_command(ctx, "search")
            if command is None:
                raise
            return "search", command, original_args


_CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings=_CONTEXT_SETTINGS,
    cls=DefaultSearchGroup,
)
tag_app = typer.Typer(help=Messages.HELP_TAG, no_args_is_help=True, context_settings=_CONTEXT_SETTINGS)
preset_app = typer.Typer(
    help=Messages.HELP_PRESET, no_args_is_help=True, context_settings=_CONTEXT_SETTINGS
)
app.add_typer(tag_app, name="tag")
backup_app = typer.Typer(
    help=Messages.HELP_BACKUP, no_args_is_help=True, context_settings=_CONTEXT_SETTINGS
)
app.add_typer(preset_app, name="preset")
app.add_typer(backup_app, name="backup")


class OutputFormat(str, Enum):
    rich = "rich"
    porcelain = "porcelain"
    json = "json"


def _styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def _fail(message: str, output_format: OutputFormat = OutputFormat.rich) -> typer.Exit:
    if output_format == OutputFormat.rich:
        console.print(_styled(message, Styles.ERROR))
    else:
        typer.echo(message, err=True)
    return typer.Exit(code=1)


def _note(message: str, style: str, output_format: OutputFormat = OutputFormat.rich) -> None:
    if output_format == OutputFormat.rich:
        console.print(_styled(message, style))
    else:
        typer.echo(message, err=True)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"frpfleet v{__version__}")
        raise typer.Exit()


def _parse_boolean(value: str) -> bool:
    token = value.strip().lower()
    if token in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if token in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(Messages.ERROR_BOOLEAN_INVALID.format(value=value))


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help=Messages.HELP_VERSION,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help=Messages.HELP_VERBOSE),
    log_level: str = typer.Option("WARNING", "--log-level", help=Messages.HELP_LOG_LEVEL),
) -> None:
    """Global options."""
    try:
        level = resolve_log_level(log_level, verbose=verbose)
    except ValueError:
        raise typer.BadParameter(
            Messages.ERROR_LOG_LEVEL_INVALID.format(value=log_level, allowed=", ".join(LOG_LEVELS)),
            param_hint="--log-level",
        )
    configure_logging(level)


def _auto_sync(output_format: OutputFormat = OutputFormat.rich) -> None:
    if not load_config().auto_sync:
        return
    try:
        incremental_sync()
    except IndexUnavailableError as exc:
        _note(Messages.WARNING_INDEX_UNAVAILABLE.format(reason=exc), Styles.WARNING, output_format)
    except (FileNotFoundError, NotADirectoryError) as exc:
        _note(Messages.WARNING_CONFIG_DIR_MISSING.format(reason=exc), Styles.WARNING, output_format)


def _resolve_targets(
    primary: str | None,
    kind: FilterKind | None,
    filters: Sequence[str],
    preset: str | None,
) -> list[ConfigEntry]:
    exprs: list[str] = list(load_preset(preset)) if preset else []
    exprs.extend(filters)
    if primary is not None and kind is not None:
        return apply_filters(exprs, entries=select_configs(primary, kind))
    if primary is not None:
        exprs.insert(0, primary)
    return apply_filters(exprs)


def _render_entries(entries: Sequence[ConfigEntry], output_format: OutputFormat) -> None:
    if output_format == OutputFormat.json:
        typer.echo(json.dumps([entry.to_dict() for entry in entries], indent=2))
        return
    if output_format == OutputFormat.porcelain:
        for entry in entries:
            fields = (
                entry.file_path,
                entry.kind,
                format_optional(entry.server_address),
                format_optional(entry.server_port),
                format_optional(entry.bind_port),
                str(entry.proxy_count),
            )
            typer.echo("\t".join(fields))
        return
    base = resolve_frp_config_dir(load_config().config_dir).resolve()
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_TYPE, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_SERVER, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_BIND_PORT, justify="right")
    table.add_column(Messages.TABLE_HEADER_PROXIES, justify="right")
    for idx, entry in enumerate(entries, start=1):
        table.add_row(
            str(idx),
            format_path(entry.file_path, base),
            entry.kind,
            format_endpoint(entry),
            format_optional(entry.bind_port),
            str(entry.proxy_count),
        )
    console.print(table)


def _show_matches(
    entries: Sequence[ConfigEntry],
    output_format: OutputFormat,
) -> None:
    if not entries:
        _note(Messages.INFO_NO_MATCHES, Styles.WARNING, output_format)
        return
    _render_entries(entries, output_format)


@app.command()
def query(
    filter_expr: str | None = typer.Argument(None, metavar="FILTER", help=Messages.HELP_QUERY_FILTER),
    kind: FilterKind | None = typer.Option(None, "--type", "-t", help=Messages.HELP_FILTER_TYPE),
    filters: list[str] = typer.Option([], "--filter", "-f", help=Messages.HELP_FILTER),
    preset: str | None = typer.Option(None, "--preset", help=Messages.HELP_PRESET_USE),
    save_as: str | None = typer.Option(None, "--save-preset", help=Messages.HELP_PRESET_SAVE),
    output_format: OutputFormat = typer.Option(
        OutputFormat.rich, "--format", help=Messages.HELP_OUTPUT_FORMAT
    ),
) -> None:
    """List configs matching a filter expression (all, type:, tag:, name:, ip:, port:, status:)."""

    _auto_sync(output_format)
    try:
        entries = _resolve_targets(filter_expr, kind, filters, preset)
    except ValueError as exc:
        raise _fail(str(exc), output_format)
    if save_as:
        exprs = list(filters)
        if filter_expr is not None:
            exprs.insert(0, str(parse_filter(filter_expr, kind)))
        try:
            save_preset(save_as, exprs)
        except ValueError as exc:
            raise _fail(str(exc), output_format)
        _note(Messages.INFO_PRESET_SAVED.format(name=save_as), Styles.SUCCESS, output_format)
    _show_matches(entries, output_format)


@app.command()
def search(
    query_text: str = typer.Argument(..., metavar="QUERY", help=Messages.HELP_SEARCH_QUERY),
    kind: FilterKind | None = typer.Option(None, "--type", "-t", help=Messages.HELP_FILTER_TYPE),
    output_format: OutputFormat = typer.Option(
        OutputFormat.rich, "--format", help=Messages.HELP_OUTPUT_FORMAT
    ),
) -> None:
    """Search configs by IP, port, tag or name, detecting the kind automatically."""

    _auto_sync(output_format)
    try:
        spec = parse_filter(query_text, kind)
        entries = select_configs(query_text, kind)
    except ValueError as exc:
        raise _fail(str(exc), output_format)
    _note(Messages.INFO_SEARCH_AS.format(filter=spec), Styles.INFO, output_format)
    _show_matches(entries, output_format)


def _progress_bar() -> Progress:
    return Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    )


def _run_with_progress(label: str, total: int, runner: Callable[..., object]):
    with _progress_bar() as progress:
        task = progress.add_task(label, total=total)

        def _advance(done: int, _total: int) -> None:
            progress.update(task, completed=done)

        return runner(on_progress=_advance)


def _render_batch_report(report: BatchReport, *, ok_label: str, fail_label: str) -> None:
    passed = format_status_icon(True, console)
    failed = format_status_icon(False, console)
    console.print(
        f"{passed} {ok_label}: {report.success_count}   "
        f"{failed} {fail_label}: {report.failure_count}"
    )
    if report.cancelled:
        console.print(
            _styled(
                Messages.WARNING_BATCH_CANCELLED.format(done=report.completed, total=report.total),
                Styles.WARNING,
            )
        )
    if not report.failed_items:
        return
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_ITEM, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_REASON, overflow="fold")
    for result in report.failed_items:
        table.add_row(result.item_id, result.message)
    console.print(table)


@app.command()
def bulk(
    action: LifecycleAction = typer.Argument(..., help=Messages.HELP_BULK_ACTION),
    filters: list[str] = typer.Option([], "--filter", "-f", help=Messages.HELP_FILTER),
    preset: str | None = typer.Option(None, "--preset", help=Messages.HELP_PRESET_USE),
    max_parallel: int | None = typer.Option(
        None, "--max-parallel", "-p", min=1, help=Messages.HELP_MAX_PARALLEL
    ),
    timeout: float | None = typer.Option(None, "--timeout", min=0.1, help=Messages.HELP_ACTION_TIMEOUT),
    dry_run: bool = typer.Option(False, "--dry-run", help=Messages.HELP_DRY_RUN),
) -> None:
    """Run start/stop/restart/reload on the services of the selected configs."""

    if not filters and not preset:
        raise _fail(Messages.ERROR_FILTER_REQUIRED)
    cfg = load_config()
    _auto_sync()
    try:
        entries = _resolve_targets(None, None, filters, preset)
    except ValueError as exc:
        raise _fail(str(exc))
    if not entries:
        console.print(_styled(Messages.INFO_NO_MATCHES, Styles.WARNING))
        return
    if dry_run:
        plan = plan_lifecycle(entries, action, prefix=cfg.service_prefix)
        console.print(_styled(Messages.INFO_DRY_RUN_BULK.format(action=plan.action.value), Styles.TITLE))
        for target in plan.targets:
            console.print(f"  {target.service}  ({target.config_path})")
        return
    parallel = max_parallel or cfg.max_parallel
    console.print(
        _styled(
            Messages.INFO_BULK_RUNNING.format(
                action=action.value, count=len(entries), parallel=parallel
            ),
            Styles.INFO,
        )
    )
    report = _run_with_progress(
        action.value,
        len(entries),
        lambda on_progress: bulk_service_action(
            entries,
            action,
            prefix=cfg.service_prefix,
            max_parallel=parallel,
            timeout=timeout or cfg.action_timeout,
            on_progress=on_progress,
        ),
    )
    _render_batch_report(report, ok_label=Messages.LABEL_SUCCEEDED, fail_label=Messages.LABEL_FAILED)
    if report.exit_code:
        raise typer.Exit(code=report.exit_code)


@app.command()
def probe(
    filters: list[str] = typer.Option([], "--filter", "-f", help=Messages.HELP_FILTER),
    preset: str | None = typer.Option(None, "--preset", help=Messages.HELP_PRESET_USE),
    max_parallel: int | None = typer.Option(
        None, "--max-parallel", "-p", min=1, help=Messages.HELP_PROBE_PARALLEL
    ),
    timeout: float | None = typer.Option(None, "--timeout", min=0.01, help=Messages.HELP_PROBE_TIMEOUT),
) -> None:
    """Check TCP reachability of the server each client config points at."""

    cfg = load_config()
    _auto_sync()
    try:
        entries = _resolve_targets(None, None, filters, preset)
    except ValueError as exc:
        raise _fail(str(exc))
    targets, skipped = probe_targets(entries)
    if not targets:
        console.print(_styled(Messages.INFO_NO_PROBE_TARGETS, Styles.WARNING))
        return
    summary = _run_with_progress(
        "probe",
        len(targets),
        lambda on_progress: probe_configs(
            entries,
            max_parallel=max_parallel or cfg.probe_parallel,
            timeout=timeout or cfg.probe_timeout,
            on_progress=on_progress,
        ),
    )
    _render_batch_report(
        summary.report, ok_label=Messages.LABEL_REACHABLE, fail_label=Messages.LABEL_UNREACHABLE
    )
    if skipped:
        console.print(_styled(Messages.INFO_PROBE_SKIPPED.format(count=skipped), Styles.INFO))
    if summary.report.exit_code:
        raise typer.Exit(code=summary.report.exit_code)


@tag_app.command("add")
def tag_add(
    path: Path = typer.Argument(..., help=Messages.HELP_TAG_PATH),
    key: str = typer.Argument(..., help=Messages.HELP_TAG_KEY),
    value: str = typer.Argument(..., help=Messages.HELP_TAG_VALUE),
) -> None:
    """Add or overwrite a tag on an indexed config."""
    try:
        add_tag(path, key, value)
    except UntaggedTargetError as exc:
        raise _fail(f"{exc} {Messages.HINT_INDEX_FIRST}")
    except (ValueError, IndexUnavailableError) as exc:
        raise _fail(str(exc))
    console.print(_styled(Messages.INFO_TAG_ADDED.format(key=key, value=value, path=path), Styles.SUCCESS))


@tag_app.command("remove")
def tag_remove(
    path: Path = typer.Argument(..., help=Messages.HELP_TAG_PATH),
    key: str = typer.Argument(..., help=Messages.HELP_TAG_KEY),
) -> None:
    """Remove a tag from an indexed config."""
    try:
        removed = remove_tag(path, key)
    except (UntaggedTargetError, ValueError, IndexUnavailableError) as exc:
        raise _fail(str(exc))
    if removed:
        console.print(_styled(Messages.INFO_TAG_REMOVED.format(key=key, path=path), Styles.SUCCESS))
    else:
        console.print(_styled(Messages.INFO_TAG_NOT_SET.format(key=key, path=path), Styles.INFO))


@tag_app.command("list")
def tag_list(
    path: Path | None = typer.Argument(None, help=Messages.HELP_TAG_LIST_PATH),
) -> None:
    """List tags of one config, or every tag with its usage count."""
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_KEY)
    table.add_column(Messages.TABLE_HEADER_VALUE)
    try:
        if path is not None:
            tags = list_tags(path)
            for key, value in sorted(tags.items()):
                table.add_row(key, value)
            empty = not tags
        else:
            counts = list_all_tags()
            table.add_column(Messages.TABLE_HEADER_COUNT, justify="right")
            for item in counts:
                table.add_row(item.key, item.value, str(item.count))
            empty = not counts
    except (UntaggedTargetError, IndexUnavailableError) as exc:
        raise _fail(str(exc))
    if empty:
        console.print(_styled(Messages.INFO_NO_TAGS, Styles.INFO))
        return
    console.print(table)


@tag_app.command("bulk")
def tag_bulk(
    key: str = typer.Argument(..., help=Messages.HELP_TAG_KEY),
    value: str = typer.Argument(..., help=Messages.HELP_TAG_VALUE),
    filters: list[str] = typer.Option([], "--filter", "-f", help=Messages.HELP_FILTER),
) -> None:
    """Tag every config selected by the filters."""
    if not filters:
        raise _fail(Messages.ERROR_FILTER_REQUIRED)
    try:
        result = bulk_tag(key, value, filters)
    except (ValueError, IndexUnavailableError) as exc:
        raise _fail(str(exc))
    if not result.tagged and not result.failed:
        console.print(_styled(Messages.INFO_NO_MATCHES, Styles.WARNING))
        return
    console.print(
        _styled(
            Messages.INFO_TAG_BULK_DONE.format(count=len(result.tagged), key=key, value=value),
            Styles.SUCCESS,
        )
    )
    for path, reason in result.failed:
        console.print(_styled(f"{path}: {reason}", Styles.ERROR))
    if result.failed:
        raise typer.Exit(code=1)


@preset_app.command("list")
def preset_list() -> None:
    """Show saved filter presets."""
    presets = list_presets()
    if not presets:
        console.print(_styled(Messages.INFO_NO_PRESETS, Styles.INFO))
        return
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_NAME)
    table.add_column(Messages.TABLE_HEADER_FILTERS)
    for name, filters in presets.items():
        table.add_row(name, " AND ".join(filters))
    console.print(table)


@preset_app.command("delete")
def preset_delete(name: str = typer.Argument(..., help=Messages.HELP_PRESET_NAME)) -> None:
    """Delete a saved filter preset."""
    if not delete_preset(name):
        raise _fail(Messages.ERROR_PRESET_NOT_FOUND.format(name=name))
    console.print(_styled(Messages.INFO_PRESET_DELETED.format(name=name), Styles.SUCCESS))


@backup_app.command("list")
def backup_list(
    path: Path | None = typer.Argument(None, help=Messages.HELP_BACKUP_LIST_PATH),
) -> None:
    """Show saved backups, newest first."""
    backups = list_backups(path)
    if not backups:
        console.print(_styled(Messages.INFO_NO_BACKUPS, Styles.INFO))
        return
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_BACKUP)
    table.add_column(Messages.TABLE_HEADER_SAVED)
    table.add_column(Messages.TABLE_HEADER_SIZE, justify="right")
    for item in backups:
        stat = item.stat()
        table.add_row(item.name, format_timestamp(stat.st_mtime), str(stat.st_size))
    console.print(table)


@backup_app.command("restore")
def backup_restore(
    backup: str = typer.Argument(..., help=Messages.HELP_BACKUP_NAME),
    target: Path = typer.Argument(..., help=Messages.HELP_BACKUP_TARGET),
) -> None:
    """Overwrite a config with one of its backups and reindex it."""
    try:
        saved = restore_backup(backup, target)
    except (FileNotFoundError, ValueError, IndexUnavailableError) as exc:
        raise _fail(str(exc))
    console.print(
        _styled(
            Messages.INFO_BACKUP_RESTORED.format(path=format_path(target), name=Path(backup).name),
            Styles.SUCCESS,
        )
    )
    if saved is not None:
        console.print(_styled(Messages.INFO_BACKUP_SAVED_PREVIOUS.format(name=saved.name), Styles.INFO))


@app.command()
def index(
    rebuild_index: bool = typer.Option(False, "--rebuild", help=Messages.HELP_INDEX_REBUILD),
    file: Path | None = typer.Option(None, "--file", help=Messages.HELP_INDEX_FILE),
    show: bool = typer.Option(False, "--show", help=Messages.HELP_INDEX_SHOW),
    verify: bool = typer.Option(False, "--verify", help=Messages.HELP_INDEX_VERIFY),
    clear: bool = typer.Option(False, "--clear", help=Messages.HELP_INDEX_CLEAR),
) -> None:
    """Synchronize the metadata index with the config directory."""

    selected = sum(bool(flag) for flag in (rebuild_index, file is not None, show, verify, clear))
    if selected > 1:
        raise _fail(Messages.ERROR_INDEX_OPTIONS_EXCLUSIVE)

    if clear:
        if clear_index():
            console.print(_styled(Messages.INFO_INDEX_CLEARED, Styles.SUCCESS))
        else:
            console.print(_styled(Messages.INFO_INDEX_CLEAR_NONE, Styles.INFO))
        return

    if show:
        aggregate = query_aggregate()
        console.print(
            _styled(
                Messages.INFO_INDEX_STATS.format(
                    total=aggregate.total,
                    servers=aggregate.servers,
                    clients=aggregate.clients,
                    proxies=aggregate.total_proxies,
                    last_sync=format_timestamp(aggregate.last_sync),
                ),
                Styles.INFO,
            )
        )
        return

    if verify:
        try:
            report = verify_index()
        except (IndexUnavailableError, FileNotFoundError, NotADirectoryError) as exc:
            raise _fail(str(exc))
        if report.ok:
            console.print(_styled(Messages.INFO_INDEX_VERIFIED, Styles.SUCCESS))
            return
        for label, paths in (
            (Messages.LABEL_MISSING, report.missing),
            (Messages.LABEL_STALE, report.stale),
            (Messages.LABEL_UNINDEXED, report.unindexed),
        ):
            for path in paths:
                console.print(_styled(f"{label}: {path}", Styles.WARNING))
        raise typer.Exit(code=1)

    if file is not None:
        try:
            entry = index_file(file)
        except FieldExtractionError as exc:
            raise _fail(str(exc))
        except IndexUnavailableError as exc:
            raise _fail(str(exc))
        console.print(
            _styled(Messages.INFO_FILE_INDEXED.format(path=entry.file_path, kind=entry.kind), Styles.SUCCESS)
        )
        return

    try:
        result = rebuild() if rebuild_index else incremental_sync()
    except (FileNotFoundError, NotADirectoryError, IndexUnavailableError, RuntimeError) as exc:
        raise _fail(str(exc))
    for skipped in result.skipped:
        console.print(_styled(Messages.WARNING_SKIPPED_LINE.format(detail=skipped), Styles.WARNING))
    if result.status == IndexStatus.UP_TO_DATE:
        console.print(_styled(Messages.INFO_INDEX_UP_TO_DATE, Styles.INFO))
    elif result.status == IndexStatus.EMPTY:
        console.print(_styled(Messages.INFO_INDEX_EMPTY, Styles.WARNING))
    else:
        console.print(
            _styled(
                Messages.INFO_INDEX_SAVED.format(
                    count=result.files_indexed, removed=result.files_removed, path=result.db_path
                ),
                Styles.SUCCESS,
            )
        )


def _render_update_result(result: UpdateResult) -> None:
    if not result.edits:
        console.print(_styled(Messages.INFO_NO_MATCHES, Styles.WARNING))
        return
    base = resolve_frp_config_dir(load_config().config_dir).resolve()
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_FIELD)
    table.add_column(Messages.TABLE_HEADER_OLD)
    table.add_column(Messages.TABLE_HEADER_NEW)
    for edit in result.edits:
        for change in edit.changes:
            old = "-" if change.old_value is None else json.dumps(change.old_value, default=str)
            table.add_row(format_path(edit.file_path, base), change.field, old, change.new_value)
    console.print(table)
    if result.dry_run:
        console.print(_styled(Messages.INFO_DRY_RUN_UPDATE.format(count=result.files_changed), Styles.TITLE))
    else:
        console.print(
            _styled(
                Messages.INFO_UPDATE_DONE.format(count=result.files_changed, backups=len(result.backups)),
                Styles.SUCCESS,
            )
        )


@app.command()
def update(
    field_name: str | None = typer.Argument(None, metavar="FIELD", help=Messages.HELP_UPDATE_FIELD),
    value: str | None = typer.Argument(None, metavar="VALUE", help=Messages.HELP_UPDATE_VALUE),
    filters: list[str] = typer.Option([], "--filter", "-f", help=Messages.HELP_FILTER),
    preset: str | None = typer.Option(None, "--preset", help=Messages.HELP_PRESET_USE),
    from_file: Path | None = typer.Option(None, "--from-file", help=Messages.HELP_UPDATE_FROM_FILE),
    dry_run: bool = typer.Option(False, "--dry-run", help=Messages.HELP_DRY_RUN),
) -> None:
    """Change one field across many configs; every file is updated or none is."""

    _auto_sync()
    try:
        if from_file is not None:
            if field_name is not None or value is not None:
                raise _fail(Messages.ERROR_UPDATE_ARGS_CONFLICT)
            result = bulk_update_from_file(from_file, dry_run=dry_run)
        else:
            if field_name is None or value is None:
                raise _fail(Messages.ERROR_UPDATE_ARGS_MISSING)
            exprs = list(load_preset(preset)) if preset else []
            exprs.extend(filters)
            if not exprs:
                raise _fail(Messages.ERROR_FILTER_REQUIRED)
            result = bulk_update_field(field_name, value, exprs, dry_run=dry_run)
    except BulkUpdateError as exc:
        console.print(_styled(Messages.ERROR_UPDATE_ROLLED_BACK, Styles.ERROR))
        for path, reason in exc.errors:
            console.print(_styled(f"  {path}: {reason}", Styles.ERROR))
        raise typer.Exit(code=1)
    except ValueError as exc:
        raise _fail(str(exc))
    _render_update_result(result)


@app.command()
def status(
    refresh: bool = typer.Option(False, "--refresh", help=Messages.HELP_STATUS_REFRESH),
    output_format: OutputFormat = typer.Option(
        OutputFormat.rich, "--format", help=Messages.HELP_OUTPUT_FORMAT
    ),
) -> None:
    """Show the cached fleet summary, refreshing it in the background when stale."""

    cfg = load_config()
    cache = build_status_cache(cfg)
    try:
        try:
            snapshot = cache.refresh_now() if refresh else cache.get()
        except (OSError, RuntimeError) as exc:
            raise _fail(Messages.ERROR_STATUS_FAILED.format(reason=exc), output_format)
        now = time.time()
        stale = snapshot.is_stale(now)
        if output_format == OutputFormat.json:
            payload = dict(snapshot.payload)
            payload["captured_at"] = snapshot.captured_at
            payload["stale"] = stale
            payload["refreshing"] = snapshot.refreshing
            typer.echo(json.dumps(payload, indent=2))
            return
        if output_format == OutputFormat.porcelain:
            for key, value in snapshot.payload.items():
                typer.echo(f"{key}\t{value}")
            return
        table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
        table.add_column(Messages.TABLE_HEADER_KEY)
        table.add_column(Messages.TABLE_HEADER_VALUE, justify="right")
        for key, value in snapshot.payload.items():
            table.add_row(key.replace("_", " "), str(value))
        console.print(_styled(Messages.INFO_STATUS_TITLE, Styles.TITLE))
        console.print(table)
        age = snapshot.age(now) or 0.0
        console.print(
            _styled(
                Messages.INFO_STATUS_AGE.format(age=age, ttl=resolve_status_ttl(cfg.status_ttl)),
                Styles.INFO,
            )
        )
        if stale:
            console.print(_styled(Messages.WARNING_STATUS_STALE, Styles.WARNING))
        if snapshot.refreshing:
            console.print(_styled(Messages.INFO_STATUS_REFRESHING, Styles.INFO))
    finally:
        cache.close()


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help=Messages.HELP_SHOW_CONFIG),
    set_config_dir: str | None = typer.Option(None, "--set-config-dir", help=Messages.HELP_SET_CONFIG_DIR),
    set_frp_dir: str | None = typer.Option(None, "--set-frp-dir", help=Messages.HELP_SET_FRP_DIR),
    set_service_prefix: str | None = typer.Option(
        None, "--set-service-prefix", help=Messages.HELP_SET_SERVICE_PREFIX
    ),
    set_ttl: float | None = typer.Option(None, "--set-ttl", help=Messages.HELP_SET_TTL),
    set_max_parallel: int | None = typer.Option(
        None, "--set-max-parallel", help=Messages.HELP_SET_MAX_PARALLEL
    ),
    set_probe_parallel: int | None = typer.Option(
        None, "--set-probe-parallel", help=Messages.HELP_SET_PROBE_PARALLEL
    ),
    set_probe_timeout: float | None = typer.Option(
        None, "--set-probe-timeout", help=Messages.HELP_SET_PROBE_TIMEOUT
    ),
    set_action_timeout: float | None = typer.Option(
        None, "--set-action-timeout", help=Messages.HELP_SET_ACTION_TIMEOUT
    ),
    set_auto_sync: str | None = typer.Option(None, "--set-auto-sync", help=Messages.HELP_SET_AUTO_SYNC),
    add_exclude: list[str] = typer.Option([], "--add-exclude", help=Messages.HELP_ADD_EXCLUDE),
    clear_excludes: bool = typer.Option(False, "--clear-excludes", help=Messages.HELP_CLEAR_EXCLUDES),
) -> None:
    """Show or change persistent settings."""

    try:
        auto_sync = _parse_boolean(set_auto_sync) if set_auto_sync is not None else None
        updates = apply_config_updates(
            config_dir=set_config_dir,
            frp_dir=set_frp_dir,
            service_prefix=set_service_prefix,
            status_ttl=set_ttl,
            max_parallel=set_max_parallel,
            probe_parallel=set_probe_parallel,
            probe_timeout=set_probe_timeout,
            action_timeout=set_action_timeout,
            auto_sync=auto_sync,
            add_excludes=add_exclude,
            clear_excludes=clear_excludes,
        )
    except ValueError as exc:
        raise _fail(str(exc))
    if updates.changed:
        console.print(_styled(Messages.INFO_CONFIG_UPDATED, Styles.SUCCESS))
    if show or not updates.changed:
        cfg = get_config_snapshot()
        console.print(
            _styled(
                Messages.INFO_CONFIG_SUMMARY.format(
                    config_dir=resolve_frp_config_dir(cfg.config_dir),
                    frp_dir=cfg.frp_dir,
                    prefix=cfg.service_prefix,
                    ttl=resolve_status_ttl(cfg.status_ttl),
                    max_parallel=cfg.max_parallel,
                    probe_parallel=cfg.probe_parallel,
                    probe_timeout=cfg.probe_timeout,
                    action_timeout=cfg.action_timeout,
                    auto_sync="yes" if cfg.auto_sync else "no",
                    excludes=", ".join(cfg.exclude_patterns) or "none",
                ),
                Styles.INFO,
            )
        )


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    args = list(argv) if argv is not None else sys.argv[1:]
    app(args=args)
