"""Orchestrated end-to-end run: rasterize, extract per page, aggregate, cost."""

from __future__ import annotations

import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence

from ..config import (
    ConfigurationError,
    ExtractorSettings,
    resolve_api_key,
    resolve_model,
    resolve_pricing,
)
from ..domain.models import ExtractionResult, Item, PageImage, PageOutcome, PageResult, TokenUsage
from ..domain.normalize import coerce_item
from ..logging import get_logger
from ..paths import slugify
from .accounting import RunAccountant
from .aggregate import Aggregation, aggregate
from .extract import OpenRouterClient, OpenRouterConfig, PageExtractor, ResponseStore
from .rasterize import PdfRasterizer, RasterizationError


LOG = get_logger("pipeline-flow")

TEMP_PREFIX = "glazier-extract-"


class Rasterizer(Protocol):
    def ensure_available(self) -> str: ...

    def rasterize(self, pdf_path: str, output_dir: str) -> List[PageImage]: ...


class Extractor(Protocol):
    def extract(self, page: PageImage) -> PageResult: ...


@dataclass
class ProjectInfo:
    name: Optional[str] = None
    number: Optional[str] = None


@dataclass
class FlowConfig:
    api_key: str
    settings: ExtractorSettings
    project: ProjectInfo = field(default_factory=ProjectInfo)
    responses_dir: Optional[str] = None


def build_flow_config(args, *, script_dir: str) -> FlowConfig:
    """Create a FlowConfig from CLI args, raising ConfigurationError on gaps."""

    api_key = resolve_api_key(script_dir)
    if not api_key:
        raise ConfigurationError(
            "OPENROUTER_API_KEY not found in .env, secrets file, or environment"
        )

    model = resolve_model(getattr(args, "model", None))
    pricing = resolve_pricing(
        model,
        price_in=getattr(args, "price_in", None),
        price_out=getattr(args, "price_out", None),
    )
    dpi = int(getattr(args, "dpi", None) or 150)
    if dpi <= 0:
        raise ConfigurationError(f"--dpi must be positive, got {dpi}")
    settings = ExtractorSettings(model=model, dpi=dpi, pricing=pricing)
    project = ProjectInfo(
        name=getattr(args, "project_name", None),
        number=getattr(args, "project_number", None),
    )

    LOG.info("Flow configuration prepared")
    LOG.info(f"Model              : {settings.model}")
    LOG.info(f"DPI                : {settings.dpi}")
    LOG.info(f"Pricing ($/M)      : {pricing.input_per_million} in / {pricing.output_per_million} out")
    LOG.info(f"Retries per page   : {settings.max_retries}")

    return FlowConfig(
        api_key=api_key,
        settings=settings,
        project=project,
        responses_dir=getattr(args, "save_responses", None),
    )


def build_result(
    aggregation: Aggregation,
    accountant: RunAccountant,
    project: ProjectInfo,
    *,
    generated_at: Optional[datetime] = None,
) -> ExtractionResult:
    stamp = generated_at or datetime.now(timezone.utc)
    return ExtractionResult(
        project={
            "name": project.name,
            "number": project.number,
            "generated_at": stamp.isoformat(timespec="seconds"),
        },
        items=aggregation.items,
        summary=aggregation.summary,
        extraction_log=accountant.as_log(),
    )


class ExtractionFlow:
    """High-level orchestrator that wires rasterizer, extractor and accountant."""

    def __init__(
        self,
        config: FlowConfig,
        *,
        rasterizer: Optional[Rasterizer] = None,
        extractor: Optional[Extractor] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        settings = config.settings
        self.rasterizer = rasterizer or PdfRasterizer(
            dpi=settings.dpi,
            timeout=settings.rasterize_timeout_seconds,
        )
        self.extractor = extractor or PageExtractor(
            OpenRouterClient(
                OpenRouterConfig(
                    api_key=config.api_key,
                    model_name=settings.model,
                    temperature=settings.temperature,
                    max_tokens=settings.max_tokens,
                    timeout_seconds=settings.request_timeout_seconds,
                )
            ),
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay_seconds,
            sleep=sleep,
        )
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Core processing steps
    # ------------------------------------------------------------------
    def _process_pages(
        self,
        pages: Sequence[PageImage],
        accountant: RunAccountant,
        collected: List[Item],
        store: Optional[ResponseStore],
    ) -> None:
        total = len(pages)
        for index, page in enumerate(pages):
            try:
                result = self.extractor.extract(page)
            except Exception as exc:
                LOG.exception(f"  Page {page.page_number}/{total}: extractor crashed: {exc}")
                result = PageResult(items=[], tokens=TokenUsage(), outcome=PageOutcome.FAILED_EXHAUSTED, error=str(exc))
            finally:
                page.discard()

            accountant.record_page(result.tokens, len(result.items))
            collected.extend(result.items)
            if store is not None:
                store.write(page.page_number, result)

            if result.outcome is PageOutcome.SUCCEEDED:
                LOG.info(f"  Page {page.page_number}/{total}: found {len(result.items)} item(s)")
            elif result.outcome is PageOutcome.EMPTY:
                LOG.info(f"  Page {page.page_number}/{total}: no items")
            else:
                LOG.warning(f"  Page {page.page_number}/{total}: skipped ({result.error})")

            if index < total - 1:
                self.sleep(self.config.settings.page_delay_seconds)

    def process_file(
        self,
        pdf_path: str,
        *,
        work_dir: str,
        accountant: RunAccountant,
        collected: List[Item],
    ) -> None:
        name = os.path.basename(pdf_path)
        LOG.info(f"=== Processing: {name}")
        file_log = accountant.start_file(name)

        try:
            pages = self.rasterizer.rasterize(pdf_path, work_dir)
        except (RasterizationError, OSError) as exc:
            LOG.warning(f"Skipping {name}: {exc}")
            accountant.record_file_failure(str(exc))
            return
        except Exception as exc:
            LOG.exception(f"Skipping {name}: rasterizer crashed: {exc}")
            accountant.record_file_failure(str(exc))
            return

        accountant.record_pages(len(pages))
        store = None
        if self.config.responses_dir:
            # work_dir name carries the input index, so equal basenames stay apart
            store = ResponseStore(self.config.responses_dir, source_name=os.path.basename(work_dir))
        try:
            self._process_pages(pages, accountant, collected, store)
        finally:
            for page in pages:
                page.discard()
        LOG.info(f"  {file_log.pages} page(s), {file_log.items} item(s) found")

    def preflight(self) -> None:
        """Checks that must pass before any file is touched."""
        tool = self.rasterizer.ensure_available()
        LOG.info(f"Rasterizer         : {tool}")

    def run(self, files: Sequence[str]) -> ExtractionResult:
        self.preflight()
        settings = self.config.settings
        accountant = RunAccountant(model=settings.model, pricing=settings.pricing)
        collected: List[Item] = []

        LOG.info(f"Files: {len(files)}  Model: {settings.model}  DPI: {settings.dpi}")
        with tempfile.TemporaryDirectory(prefix=TEMP_PREFIX) as temp_dir:
            for index, pdf_path in enumerate(files, start=1):
                stem = os.path.splitext(os.path.basename(pdf_path))[0]
                work_dir = os.path.join(temp_dir, f"{index:03d}_{slugify(stem)}")
                self.process_file(
                    pdf_path,
                    work_dir=work_dir,
                    accountant=accountant,
                    collected=collected,
                )

        result = build_result(aggregate(collected), accountant, self.config.project)
        log_run_summary(result)
        return result


def log_run_summary(result: ExtractionResult) -> None:
    log = result.extraction_log
    LOG.info("Summary:")
    LOG.info(f"  Total pages   : {log['pages_processed']}")
    LOG.info(f"  Unique items  : {result.summary.unique_items}")
    LOG.info(f"  Total quantity: {result.summary.total}")
    LOG.info(f"  Tokens        : {log['tokens_input']:,} in / {log['tokens_output']:,} out")
    LOG.info(f"  Cost          : ${log['cost_usd']:.4f}")


def reaggregate_reports(reports: Sequence[dict], project: ProjectInfo) -> ExtractionResult:
    """Rebuild one report from the items and logs of existing reports."""
    items: List[Item] = []
    pages = tokens_in = tokens_out = 0
    cost = 0.0
    files: List[dict] = []
    models: List[str] = []
    for report in reports:
        for raw in report.get("items") or []:
            item = coerce_item(raw)
            if item is not None:
                items.append(item)
        log = report.get("extraction_log") or {}
        pages += int(log.get("pages_processed") or 0)
        tokens_in += int(log.get("tokens_input") or 0)
        tokens_out += int(log.get("tokens_output") or 0)
        cost += float(log.get("cost_usd") or 0.0)
        files.extend(f for f in log.get("files") or [] if isinstance(f, dict))
        model = log.get("model")
        if model and model not in models:
            models.append(model)

    aggregation = aggregate(items)
    return ExtractionResult(
        project={
            "name": project.name,
            "number": project.number,
            "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        },
        items=aggregation.items,
        summary=aggregation.summary,
        extraction_log={
            "model": ", ".join(models) or None,
            "pages_processed": pages,
            "tokens_used": tokens_in + tokens_out,
            "tokens_input": tokens_in,
            "tokens_output": tokens_out,
            "cost_usd": round(cost, 4),
            "files": files,
        },
    )
