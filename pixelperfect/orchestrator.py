"""Comparison orchestrator — two concurrent captures, one diff, one result."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from pixelperfect.browser.pipeline import CapturePipeline
from pixelperfect.browser.session import SessionManager
from pixelperfect.diff.engine import DiffEngine
from pixelperfect.exceptions import (
    CaptureError,
    ComparerError,
    ComparisonError,
    LifecycleError,
    ValidationError,
)
from pixelperfect.models.capture import CaptureRequest, CaptureResult, utc_timestamp
from pixelperfect.models.comparison import ComparisonResult, MultiViewportResult, ViewportOutcome
from pixelperfect.models.config import ComparerConfig, ComparisonOptions, ViewportConfig
from pixelperfect.url_utils import is_valid_url

logger = logging.getLogger(__name__)


def resolve_options(options: ComparisonOptions | dict[str, Any] | None) -> ComparisonOptions:
    """Validate and clamp caller options once, at the boundary."""
    if options is None:
        return ComparisonOptions()
    if isinstance(options, ComparisonOptions):
        return options
    try:
        return ComparisonOptions.model_validate(options)
    except PydanticValidationError as e:
        details = "; ".join(err["msg"] for err in e.errors())
        raise ValidationError(f"Invalid comparison options: {details}") from e


def _check_urls(url_a: str, url_b: str) -> None:
    if not url_a or not url_b:
        raise ValidationError("Both urlA and urlB are required")
    if not is_valid_url(url_a):
        raise ValidationError(f"Invalid URL A: {url_a}", url=url_a)
    if not is_valid_url(url_b):
        raise ValidationError(f"Invalid URL B: {url_b}", url=url_b)


async def _cancel_and_wait(tasks) -> None:
    """Cancel unfinished capture tasks and wait until their pages are closed."""
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class ComparisonOrchestrator:
    """Coordinates the capture → diff pipeline for a pair of URLs.

    The browser is reused across sequential comparisons through the session
    manager; every comparison still gets two brand new pages.
    """

    def __init__(
        self,
        config: Optional[ComparerConfig] = None,
        sessions: Optional[SessionManager] = None,
        pipeline: Optional[CapturePipeline] = None,
        diff_engine: Optional[DiffEngine] = None,
    ):
        self.config = config or ComparerConfig()
        self.sessions = sessions or SessionManager(self.config.browser)
        self.pipeline = pipeline or CapturePipeline.from_config(self.config)
        self.diff_engine = diff_engine or DiffEngine(alpha=self.config.diff_alpha)

    async def _capture_pair(self, request_a: CaptureRequest, request_b: CaptureRequest) -> tuple[CaptureResult, CaptureResult]:
        """Run both captures concurrently; the first failure cancels the other.

        Both tasks have finished, and so closed their pages, on every exit
        path, including cancellation of the caller.
        """
        try:
            session = await self.sessions.get()
        except ComparerError:
            raise
        except Exception as e:
            raise LifecycleError(f"Browser session could not be started: {e}") from e

        task_a = asyncio.create_task(self.pipeline.run(session, request_a), name="capture-A")
        task_b = asyncio.create_task(self.pipeline.run(session, request_b), name="capture-B")
        tasks = [task_a, task_b]

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except BaseException:
            await _cancel_and_wait(tasks)
            raise

        failed = [t for t in tasks if t in done and not t.cancelled() and t.exception() is not None]
        if failed:
            await _cancel_and_wait(pending)
            raise failed[0].exception()
        return task_a.result(), task_b.result()

    async def compare(
        self,
        url_a: str,
        url_b: str,
        options: ComparisonOptions | dict[str, Any] | None = None,
    ) -> ComparisonResult:
        _check_urls(url_a, url_b)
        opts = resolve_options(options)
        comparison_id = uuid.uuid4().hex
        start = time.monotonic()
        logger.info("Starting comparison %s: %s vs %s", comparison_id, url_a, url_b)
        logger.debug("Comparison options: %s", opts.model_dump())

        request_a = opts.to_capture_request(url_a)
        request_b = opts.to_capture_request(url_b)
        try:
            try:
                capture_a, capture_b = await self._capture_pair(request_a, request_b)
            except ComparerError:
                raise
            except Exception as e:
                logger.error("Comparison %s capture failed unexpectedly: %s", comparison_id, e)
                raise CaptureError(f"Page capture failed: {e}") from e
            try:
                diff = await asyncio.to_thread(
                    self.diff_engine.compare,
                    capture_a.image,
                    capture_b.image,
                    opts.diff_threshold,
                    opts.include_aa,
                )
            except ComparerError:
                raise
            except Exception as e:
                logger.error("Comparison %s diff failed unexpectedly: %s", comparison_id, e)
                raise ComparisonError(f"Visual diff computation failed: {e}") from e
            finally:
                capture_a.release()
                capture_b.release()
        except ComparerError as e:
            logger.error("Comparison %s failed (%s): %s", comparison_id, e.code, e.message)
            raise

        result = ComparisonResult(
            id=comparison_id,
            request_a=request_a,
            request_b=request_b,
            capture_a=capture_a,
            capture_b=capture_b,
            metrics=diff.metrics,
            image_a=diff.image_a,
            image_b=diff.image_b,
            diff_image=diff.diff_image,
            compared_at=utc_timestamp(),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        for label, cap in (("A", capture_a), ("B", capture_b)):
            if cap.degraded:
                logger.warning("Page %s was captured as viewport only despite full page request", label)
        logger.info(
            "Comparison %s completed: mismatch %.2f%%, changed pixels: %d",
            comparison_id, result.metrics.mismatch_percent, result.metrics.changed_pixels,
        )
        return result

    async def compare_viewports(
        self,
        url_a: str,
        url_b: str,
        viewports: Optional[list[ViewportConfig]] = None,
        options: ComparisonOptions | dict[str, Any] | None = None,
    ) -> MultiViewportResult:
        """One comparison per viewport, run sequentially.

        A failure on one viewport is recorded and the next one still runs.
        """
        _check_urls(url_a, url_b)
        opts = resolve_options(options)
        targets = viewports or self.config.viewports
        start = time.monotonic()
        logger.info("Starting multi-viewport comparison (%d viewports): %s vs %s", len(targets), url_a, url_b)

        outcome = MultiViewportResult(url_a=url_a, url_b=url_b)
        try:
            for viewport in targets:
                try:
                    await self.sessions.reset(viewport)
                    result = await self.compare(url_a, url_b, opts)
                except ComparerError as e:
                    logger.error("Viewport %s failed: %s", viewport.name, e.message)
                    outcome.outcomes.append(ViewportOutcome(viewport=viewport, error=e.message, code=e.code))
                    continue
                outcome.outcomes.append(ViewportOutcome(viewport=viewport, result=result))
                logger.info("Completed %s viewport", viewport.name)
        finally:
            # Later single comparisons go back to the configured default viewport.
            await self.sessions.close()

        outcome.duration_ms = int((time.monotonic() - start) * 1000)
        return outcome

    async def close(self) -> None:
        await self.sessions.close()

    async def _run_and_close(self, coro):
        try:
            return await coro
        finally:
            await self.close()

    def run_compare(self, url_a: str, url_b: str, options=None) -> ComparisonResult:
        """Synchronous entry point: compare once and shut the browser down."""
        return asyncio.run(self._run_and_close(self.compare(url_a, url_b, options)))

    def run_compare_viewports(self, url_a: str, url_b: str, viewports=None, options=None) -> MultiViewportResult:
        return asyncio.run(self._run_and_close(self.compare_viewports(url_a, url_b, viewports, options)))
