import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from catalog_crawler.config.errors import ConfigLoaderError
from catalog_crawler.crawler.errors import EngineError, RangePreparationError
from catalog_crawler.gaps import render_collection_report, render_gap_report
from catalog_crawler.logger import configure_logging, get_logger
from catalog_crawler.workflow.runner import CrawlRunner, RunnerOptions

console = Console()
cli = typer.Typer(help="Инкрементальный сбор каталога с плавающей пагинацией и добором пропусков.")
logger = get_logger(__name__)


def _common_options() -> dict:
    return dict(
        config_path=typer.Option(
            None,
            "--config",
            "-c",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            envvar="CRAWLER_CONFIG_PATH",
            help="Путь к конфигурации (YAML/JSON). "
            "Если не указан, используется конфигурация из переменных окружения.",
        ),
        log_level=typer.Option(
            "INFO",
            "--log-level",
            envvar="LOG_LEVEL",
            help="Уровень логирования (DEBUG/INFO/WARNING/ERROR/CRITICAL).",
        ),
        limit=typer.Option(
            None,
            "--limit",
            "-l",
            min=0,
            help="Сколько страниц собрать за запуск (0 — все несобранные). "
            "По умолчанию берётся из конфигурации.",
        ),
        reset_state=typer.Option(
            False,
            "--reset-state",
            help="Перед запуском очистить локальное хранилище товаров.",
        ),
        dry_run=typer.Option(
            False,
            "--dry-run",
            help="Выполнить обход без записи в хранилище.",
        ),
        backfill=typer.Option(
            True,
            "--backfill/--no-backfill",
            help="После обхода искать и добирать пропущенные позиции.",
        ),
    )


def _run_safely(action):
    try:
        return action()
    except ConfigLoaderError:
        raise typer.Exit(code=2)
    except (RangePreparationError, EngineError) as exc:
        console.print(f"[bold red]Обход не выполнен:[/bold red] {exc}")
        raise typer.Exit(code=1)


@cli.command("crawl")
def crawl(
    config_path: Optional[Path] = _common_options()["config_path"],
    log_level: str = _common_options()["log_level"],
    limit: Optional[int] = _common_options()["limit"],
    reset_state: bool = _common_options()["reset_state"],
    dry_run: bool = _common_options()["dry_run"],
    backfill: bool = _common_options()["backfill"],
    run_id: Optional[str] = typer.Option(
        None,
        "--run-id",
        help="Идентификатор запуска (по умолчанию генерируется UUID4).",
    ),
) -> None:
    """Единичный инкрементальный обход."""
    configure_logging(log_level.upper())  # type: ignore[arg-type]
    options = RunnerOptions(
        config_path=config_path,
        run_id=run_id,
        page_limit=limit,
        reset_state=reset_state,
        dry_run=dry_run,
        backfill=backfill,
    )
    report = _run_safely(lambda: CrawlRunner().run(options))
    if report.collect.cancelled:
        console.print("[yellow]Обход остановлен, собранные страницы сохранены[/yellow]")
        raise typer.Exit(code=130)
    console.print("[bold green]Обход завершён[/bold green]")


@cli.command("gaps")
def gaps(
    config_path: Optional[Path] = _common_options()["config_path"],
    log_level: str = _common_options()["log_level"],
    offline: bool = typer.Option(
        False,
        "--offline",
        help="Не обращаться к сайту: проверять только по данным хранилища.",
    ),
) -> None:
    """Отчёт о пропущенных позициях в хранилище."""
    configure_logging(log_level.upper())  # type: ignore[arg-type]
    options = RunnerOptions(config_path=config_path)
    result = _run_safely(
        lambda: CrawlRunner().detect_gaps(options, with_metadata=not offline)
    )
    render_gap_report(result, console)


@cli.command("backfill")
def backfill(
    config_path: Optional[Path] = _common_options()["config_path"],
    log_level: str = _common_options()["log_level"],
    page_id: Optional[int] = typer.Option(
        None,
        "--page-id",
        min=0,
        help="Добрать только одну страницу хранилища.",
    ),
) -> None:
    """Поиск и добор пропущенных позиций без обхода новых страниц."""
    configure_logging(log_level.upper())  # type: ignore[arg-type]
    options = RunnerOptions(config_path=config_path)
    detection, result = _run_safely(lambda: CrawlRunner().backfill(options, page_id))
    if detection is not None:
        render_gap_report(detection, console)
    render_collection_report(result, console)


@cli.command("watch")
def watch(
    config_path: Optional[Path] = _common_options()["config_path"],
    log_level: str = _common_options()["log_level"],
    limit: Optional[int] = _common_options()["limit"],
    dry_run: bool = _common_options()["dry_run"],
    backfill: bool = _common_options()["backfill"],
    success_delay: float = typer.Option(
        3600.0,
        "--success-delay",
        min=0.0,
        help="Пауза между успешными циклами (секунды).",
    ),
    error_delay: float = typer.Option(
        300.0,
        "--error-delay",
        min=0.0,
        help="Пауза перед повторным запуском после ошибки (секунды).",
    ),
    max_runs: Optional[int] = typer.Option(
        None,
        "--max-runs",
        min=1,
        help="Опциональный лимит числа итераций watch-режима.",
    ),
) -> None:
    """Непрерывный режим: повторяет инкрементальный обход по расписанию."""
    configure_logging(log_level.upper())  # type: ignore[arg-type]
    runner = CrawlRunner()
    options = RunnerOptions(
        config_path=config_path,
        page_limit=limit,
        dry_run=dry_run,
        backfill=backfill,
    )
    runs_completed = 0
    console.print(
        "[cyan]Watch-режим активирован[/cyan]: "
        f"success_delay={success_delay}s, error_delay={error_delay}s, "
        f"max_runs={max_runs or '∞'}",
    )
    try:
        while max_runs is None or runs_completed < max_runs:
            wait_time = success_delay
            try:
                report = runner.run(options)
                runs_completed += 1
                logger.info("Цикл обхода #%s завершён", runs_completed)
                if report.collect.cancelled:
                    break
            except ConfigLoaderError:
                raise typer.Exit(code=2)
            except Exception:  # pragma: no cover - зависит от доступности сайта
                logger.exception(
                    "Цикл обхода завершился ошибкой, повтор через %s секунд",
                    error_delay,
                )
                runs_completed += 1
                wait_time = error_delay
            if max_runs is not None and runs_completed >= max_runs:
                break
            if wait_time <= 0:
                continue
            typer.echo(f"Следующий запуск через {wait_time:.0f} секунд")
            time.sleep(wait_time)
    except KeyboardInterrupt:
        console.print("[yellow]Watch-режим остановлен пользователем[/yellow]")


def entrypoint() -> None:
    """CLI entrypoint для Docker."""
    cli()
