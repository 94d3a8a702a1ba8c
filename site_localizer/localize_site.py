"""
Localize a static web project into one copy per target language.

HTML documents and script sources found under the project root are translated
through a LibreTranslate-compatible service and written to ``dist/<lang>/``;
every other matched file is copied unchanged.

Configuration comes from ``config.yaml``, ``.env`` and the environment
(``TRANSLATE_API_URL``, ``TRANSLATE_API_KEY``, ``TARGET_LANGS``).

Usage:
    site-localizer
"""
import asyncio
import enum
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List

from aiolimiter import AsyncLimiter
from tqdm import tqdm

from site_localizer.app_config import AppConfig, load_app_config
from site_localizer.logging_config import LOGGER_NAME
from site_localizer.markup_localizer import localize_html_file
from site_localizer.script_localizer import SCRIPT_EXTENSIONS, localize_script_file
from site_localizer.translation_cache import TranslationCache
from site_localizer.translation_client import TranslationClient

# Named explicitly so records still reach the package logger under `python -m`.
logger = logging.getLogger(f"{LOGGER_NAME}.localize_site")

MARKUP_EXTENSIONS = frozenset({'.html', '.htm'})
FAILURE_REPORT_NAME = 'failed_files_report.log'


class FileKind(enum.Enum):
    MARKUP = 'markup'
    SCRIPT = 'script'
    COPY = 'copy'


@dataclass
class LanguageStats:
    markup: int = 0
    scripts: int = 0
    parse_fallbacks: int = 0
    copied: int = 0
    failed: int = 0


@dataclass
class RunSummary:
    files_found: int = 0
    remote_calls: int = 0
    languages: Dict[str, LanguageStats] = field(default_factory=dict)
    # relative path -> ["<lang>: <error>", ...]
    failed_files: Dict[str, List[str]] = field(default_factory=dict)


def dispatch_kind(file_path: str) -> FileKind:
    ext = os.path.splitext(file_path)[1].lower()
    if ext in MARKUP_EXTENSIONS:
        return FileKind.MARKUP
    if ext in SCRIPT_EXTENSIONS:
        return FileKind.SCRIPT
    return FileKind.COPY


def _is_under(path: str, parent: str) -> bool:
    return path == parent or path.startswith(parent.rstrip(os.sep) + os.sep)


def discover_files(
        project_root: str,
        patterns: Iterable[str],
        ignore_dirs: Iterable[str],
        excluded_paths: Iterable[str] = ()
) -> List[str]:
    """
    Expand glob ``patterns`` under ``project_root``.

    Files inside any directory named in ``ignore_dirs``, and files at or below
    any of ``excluded_paths``, are dropped. Returns sorted absolute paths.
    """
    root = Path(os.path.abspath(project_root))
    ignored = set(ignore_dirs)
    excluded = [os.path.abspath(p) for p in excluded_paths]

    found = set()
    for pattern in patterns:
        for match in root.glob(pattern):
            if not match.is_file():
                continue
            relative_parts = match.relative_to(root).parts
            if any(part in ignored for part in relative_parts[:-1]):
                continue
            absolute = str(match)
            if any(_is_under(absolute, path) for path in excluded):
                continue
            found.add(absolute)
    return sorted(found)


def reset_output_dir(output_base: str, dry_run: bool = False) -> None:
    """Delete and recreate one language's output directory."""
    if dry_run:
        logger.info(f"[Dry Run] Would reset output directory '{output_base}'.")
        return
    if os.path.exists(output_base):
        shutil.rmtree(output_base)
    os.makedirs(output_base, exist_ok=True)


def copy_verbatim(file_path: str, output_path: str, dry_run: bool = False) -> None:
    if dry_run:
        logger.info(f"[Dry Run] Would copy '{file_path}' to '{output_path}'.")
        return
    os.makedirs(os.path.dirname(output_path), exist_ok=True)
    shutil.copyfile(file_path, output_path)
    logger.debug(f"[COPY] {file_path} -> {output_path}")


async def process_file(
        file_path: str,
        config: AppConfig,
        translator,
        target_language: str,
        output_base: str,
        stats: LanguageStats
) -> None:
    output_path = os.path.join(output_base, os.path.relpath(file_path, config.project_root))
    kind = dispatch_kind(file_path)

    if kind is FileKind.MARKUP:
        await localize_html_file(file_path, output_path, translator, target_language, config.dry_run)
        stats.markup += 1
    elif kind is FileKind.SCRIPT:
        parsed = await localize_script_file(
            file_path, output_path, translator, target_language, config.script_dialect, config.dry_run
        )
        if parsed:
            stats.scripts += 1
        else:
            stats.parse_fallbacks += 1
    else:
        copy_verbatim(file_path, output_path, config.dry_run)
        stats.copied += 1


async def run_localization(config: AppConfig, translator) -> RunSummary:
    """
    Localize every discovered file into every target language.

    Languages are processed in configuration order and files one at a time. An
    error in one file is logged and recorded; it never stops the run.
    """
    summary = RunSummary()
    files = discover_files(
        config.project_root,
        config.file_patterns,
        config.ignore_dirs,
        excluded_paths=[config.output_dir, config.cache_file]
    )
    summary.files_found = len(files)
    if not files:
        logger.info(f"No files found to translate (patterns: {config.file_patterns}). Exiting.")
        return summary
    logger.info(f"Found {len(files)} files.")

    for target_language in config.target_languages:
        output_base = os.path.join(config.output_dir, target_language)
        reset_output_dir(output_base, config.dry_run)
        stats = summary.languages.setdefault(target_language, LanguageStats())

        for file_path in tqdm(files, desc=f"Localizing [{target_language}]", unit="file"):
            try:
                await process_file(file_path, config, translator, target_language, output_base, stats)
            except Exception as file_exc:
                logger.exception("Error processing %s [%s]", file_path, target_language)
                stats.failed += 1
                relative_path = os.path.relpath(file_path, config.project_root)
                summary.failed_files.setdefault(relative_path, []).append(f"{target_language}: {file_exc}")

    summary.remote_calls = getattr(translator, 'remote_calls', 0)
    return summary


def write_failure_report(summary: RunSummary, report_path: str) -> None:
    """Write a Markdown list of failed files, or remove a stale report after a clean run."""
    if not summary.failed_files:
        if os.path.exists(report_path):
            os.remove(report_path)
        return

    logger.info(f"Some files failed. Writing report to {report_path}")
    report_dir = os.path.dirname(report_path)
    if report_dir:
        os.makedirs(report_dir, exist_ok=True)
    with open(report_path, 'w', encoding='utf-8') as f:
        f.write("## Localization Run Failures\n\n")
        f.write("The following files could not be localized and are missing from the output tree.\n\n")
        for relative_path, errors in sorted(summary.failed_files.items()):
            f.write(f"### `{relative_path}`\n")
            for error in errors:
                f.write(f"- {error}\n")
            f.write("\n")


def log_summary(summary: RunSummary) -> None:
    for target_language, stats in summary.languages.items():
        logger.info(
            "[%s] markup: %d, scripts: %d, parse fallbacks: %d, copied: %d, failed: %d",
            target_language, stats.markup, stats.scripts, stats.parse_fallbacks, stats.copied, stats.failed
        )
    logger.info("Remote translation calls: %d", summary.remote_calls)


def build_translation_client(config: AppConfig, cache: TranslationCache) -> TranslationClient:
    rate_limiter = None
    if config.max_requests_per_minute > 0:
        rate_limiter = AsyncLimiter(max_rate=config.max_requests_per_minute, time_period=60)
    return TranslationClient(
        cache,
        api_url=config.api_url,
        api_key=config.api_key,
        source_language=config.source_language,
        timeout=config.request_timeout,
        delay=config.request_delay,
        rate_limiter=rate_limiter
    )


async def main() -> RunSummary:
    """
    Main function to orchestrate the localization run.
    """
    config = load_app_config()
    logger.info("Starting translation run...")
    logger.info(f"API: {config.api_url} | Targets: {','.join(config.target_languages)}")

    cache = TranslationCache(config.cache_file)
    cache.load()

    async with build_translation_client(config, cache) as translator:
        summary = await run_localization(config, translator)

    write_failure_report(summary, os.path.join(os.path.dirname(config.log_file_path), FAILURE_REPORT_NAME))
    log_summary(summary)
    logger.info(f"Translation run complete. Check the {config.output_dir} directory.")
    return summary


def run() -> None:
    """Console entry point. Always exits 0; failures are reported in the log."""
    try:
        asyncio.run(main())
    except Exception as main_exc:
        logger.error(f"An unexpected error occurred during execution: {main_exc}")


if __name__ == "__main__":
    run()
