from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from contextlib import suppress
from typing import Any, TypeVar

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import ValidationError

from ..config import DashboardConfig
from ..core.diff import SectionDiff, compare_documents
from ..core.normalize import normalize, normalize_comparison
from ..core.suggestions import SuggestionSearchController
from ..core.timeseries import AlignedSeries, align, collect_samples
from ..data import ExperimentSource, SourceError, source_from_config
from ..reporting.csv_export import EXPORT_FILENAME, ExperimentCSVExporter
from ..reporting.fulltests import (
    derive_fulltest_date,
    format_logs,
    logs_to_text,
    normalize_pod_logs,
    sort_fulltests,
)
from ..reporting.listing import (
    SORT_KEYS,
    all_tags,
    filter_experiments,
    improved_experiments,
    paginate,
    sort_experiments,
)
from ..reporting.testsuites import Pagination, suite_row
from ..utils.json_utils import sanitize_for_json
from ..utils.telemetry import get_logger, log_json, time_block
from . import pages
from .schema import SuggestionMessage

logger = get_logger("expdash.server")

T = TypeVar("T")


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _http_error(exc: SourceError) -> HTTPException:
    # Caller mistakes keep their status; everything else is an upstream failure.
    if exc.status in (400, 404):
        return HTTPException(status_code=exc.status, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def create_app(cfg: DashboardConfig | None = None, source: ExperimentSource | None = None) -> FastAPI:
    cfg = cfg or DashboardConfig()
    src = source or source_from_config(cfg)
    exporter = ExperimentCSVExporter()

    app = FastAPI(title="Experiment Dashboard")
    app.state.config = cfg
    app.state.source = src

    async def _call(fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(fn, *args)

    # -- shared loaders --------------------------------------------------------

    async def _experiment_rows(
        search: str, filter_type: str, tags: list[str], sort: str, direction: str
    ) -> list[dict[str, Any]]:
        if sort not in SORT_KEYS:
            raise HTTPException(status_code=400, detail=f"Unknown sort key: {sort}")
        if direction not in ("asc", "desc"):
            raise HTTPException(status_code=400, detail=f"Invalid sort direction: {direction}")
        listing = await _call(src.list_experiments, {"search": search or None})
        records = [normalize(r) for r in listing.get("results", [])]
        filtered = filter_experiments(records, search=search, filter_type=filter_type, tags=tags)
        return sort_experiments(filtered, key=sort, direction=direction)  # type: ignore[return-value]

    async def _comparison(a: str, b: str) -> tuple[dict[str, Any], list[SectionDiff]]:
        with time_block(logger, "compare", a=a, b=b) as fields:
            payload = normalize_comparison(await _call(src.fetch_comparison_document, a, b))
            sections = compare_documents(
                payload.get("docA"),
                payload.get("docB"),
                max_items=cfg.diff_max_items,
                max_depth=cfg.diff_max_depth,
            )
            fields["entries"] = sum(len(s.changes) for s in sections)
        return payload, sections

    async def _goal_series(exp_name: str | None, max_points: int) -> AlignedSeries:
        records = await _call(src.fetch_goal_records, {"exp_name": exp_name or None})
        docs = [normalize(r) for r in records]
        samples = collect_samples(docs, cfg.goal_categories)
        return align(samples, max_points=max_points)

    async def _suite_page(
        fetch: Callable[..., dict[str, Any]],
        args: tuple[Any, ...],
        page: int,
        limit: int | None,
        **extra: Any,
    ) -> tuple[list[dict[str, Any]], Pagination]:
        per_page = cfg.suite_page_size if limit is None else limit
        if per_page < 1 or page < 1:
            raise HTTPException(status_code=400, detail="page and limit must be >= 1")
        listing = await _call(fetch, *args, {"page": page, "limit": per_page, **extra})
        rows = [
            suite_row(item, cfg.plot_path_prefix, cfg.plot_base_url)
            for item in listing.get("results", [])
            if isinstance(item, Mapping)
        ]
        return rows, Pagination.from_payload(listing.get("pagination"), page, per_page)

    def _max_points(value: int | None) -> int:
        points = cfg.chart_max_points if value is None else value
        if points < 1:
            raise HTTPException(status_code=400, detail="max_points must be >= 1")
        return points

    # -- pages -----------------------------------------------------------------

    @app.get("/", response_class=HTMLResponse)
    async def experiments_page(
        search: str = "",
        filter: str = "all",
        tags: list[str] = Query(default=[]),
        sort: str = "date",
        direction: str = "desc",
        page: int = 1,
    ) -> HTMLResponse:
        params = {
            "search": search,
            "filter": filter,
            "tags": tags,
            "sort": sort,
            "direction": direction,
            "page": page,
        }
        error = None
        rows: list[dict[str, Any]] = []
        try:
            rows = await _experiment_rows(search, filter, tags, sort, direction)
        except SourceError as exc:
            logger.warning("experiments page: source failed: %s", exc)
            error = f"Could not load experiments: {exc}"
        page_rows, total_pages = paginate(rows, page=page, per_page=cfg.page_size)
        current = min(max(1, page), total_pages)
        return HTMLResponse(
            pages.render_experiment_list(
                page_rows,
                count=len(rows),
                page=current,
                total_pages=total_pages,
                params=params,
                tags=all_tags(rows),
                error=error,
            )
        )

    @app.get("/compare", response_class=HTMLResponse)
    async def compare_page(a: str = "", b: str = "") -> HTMLResponse:
        error = None
        sections: list[SectionDiff] = []
        if a and b:
            try:
                payload, sections = await _comparison(a, b)
                if not payload["success"]:
                    error = payload.get("error") or "Comparison unavailable"
            except SourceError as exc:
                logger.warning("compare page: source failed: %s", exc)
                error = f"Could not load comparison: {exc}"
        elif a or b:
            error = "Select two experiments to compare"
        return HTMLResponse(
            pages.render_compare(a, b, sections, max_items=cfg.diff_max_items, error=error)
        )

    @app.get("/manager", response_class=HTMLResponse)
    async def manager_page(exp_name: str = "", max_points: int | None = None) -> HTMLResponse:
        points = _max_points(max_points)
        error = None
        series: AlignedSeries | None = None
        improved: list[dict[str, Any]] = []
        try:
            series = await _goal_series(exp_name, points)
            listing = await _call(src.list_experiments, {"search": exp_name or None})
            improved = improved_experiments(normalize(r) for r in listing.get("results", []))  # type: ignore[assignment]
        except SourceError as exc:
            logger.warning("manager page: source failed: %s", exc)
            error = f"Could not load goal values: {exc}"
        return HTMLResponse(
            pages.render_manager(series, improved, exp_name=exp_name, error=error)
        )

    @app.get("/fulltests", response_class=HTMLResponse)
    async def fulltests_page() -> HTMLResponse:
        error = None
        tests: list[dict[str, Any]] = []
        try:
            listing = await _call(src.list_fulltests, None)
            for t in sort_fulltests(listing.get("results", [])):
                row = dict(t)
                row["_date"] = derive_fulltest_date(t).strftime("%Y-%m-%d %H:%M")
                tests.append(row)
        except SourceError as exc:
            error = str(exc)
        return HTMLResponse(pages.render_fulltests(tests, error=error))

    @app.get("/testsuites", response_class=HTMLResponse)
    async def test_suites_page(search: str = "", page: int = 1, limit: int | None = None) -> HTMLResponse:
        error = None
        rows: list[dict[str, Any]] = []
        pagination = Pagination.from_payload(None, 1, cfg.suite_page_size)
        try:
            rows, pagination = await _suite_page(
                src.list_test_suites, (), page, limit, search=search or None
            )
        except SourceError as exc:
            logger.warning("test suites page: source failed: %s", exc)
            error = f"Could not load test suites: {exc}"
        return HTMLResponse(pages.render_test_suites(rows, pagination, search=search, error=error))

    @app.get("/testsuites/tests", response_class=HTMLResponse)
    async def suite_tests_page(suite_path: str = "", page: int = 1, limit: int | None = None) -> HTMLResponse:
        if not suite_path:
            raise HTTPException(status_code=400, detail="suite_path is required")
        error = None
        rows: list[dict[str, Any]] = []
        pagination = Pagination.from_payload(None, 1, cfg.suite_page_size)
        try:
            rows, pagination = await _suite_page(src.list_test_suite_tests, (suite_path,), page, limit)
        except SourceError as exc:
            logger.warning("suite tests page: source failed: %s", exc)
            error = f"Could not load tests: {exc}"
        return HTMLResponse(pages.render_suite_tests(suite_path, rows, pagination, error=error))

    @app.get("/testsuites/plot", response_class=HTMLResponse)
    async def suite_plot_page(path: str = "") -> HTMLResponse:
        if not path:
            raise HTTPException(status_code=400, detail="path is required")
        try:
            content = await _call(src.get_test_suite_plot, path)
        except SourceError as exc:
            raise _http_error(exc) from exc
        # Plot documents are rendered by the backend and served as-is.
        return HTMLResponse(content)

    # -- JSON API --------------------------------------------------------------

    @app.get("/api/experiments")
    async def experiments_api(
        search: str = "",
        filter: str = "all",
        tags: str | None = None,
        sort: str = "date",
        direction: str = "desc",
        page: int = 1,
    ) -> JSONResponse:
        try:
            rows = await _experiment_rows(search, filter, _split_list(tags), sort, direction)
        except SourceError as exc:
            raise _http_error(exc) from exc
        page_rows, total_pages = paginate(rows, page=page, per_page=cfg.page_size)
        return JSONResponse(
            sanitize_for_json(
                {
                    "results": page_rows,
                    "count": len(rows),
                    "page": min(max(1, page), total_pages),
                    "total_pages": total_pages,
                    "tags": all_tags(rows),
                }
            )
        )

    @app.get("/api/experiments/export.csv")
    async def experiments_csv(
        search: str = "",
        filter: str = "all",
        tags: list[str] = Query(default=[]),
        sort: str = "date",
        direction: str = "desc",
    ) -> Response:
        flat_tags = [t for raw in tags for t in _split_list(raw)]
        try:
            rows = await _experiment_rows(search, filter, flat_tags, sort, direction)
        except SourceError as exc:
            raise _http_error(exc) from exc
        log_json(logger, "csv_export", rows=len(rows))
        return Response(
            content=exporter.render(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
        )

    @app.get("/api/compare")
    async def compare_api(a: str = "", b: str = "") -> JSONResponse:
        if not a or not b:
            raise HTTPException(status_code=400, detail="Both a and b are required")
        try:
            payload, sections = await _comparison(a, b)
        except SourceError as exc:
            raise _http_error(exc) from exc
        body: dict[str, Any] = {
            "success": payload["success"],
            "a": a,
            "b": b,
            "max_items": cfg.diff_max_items,
            "sections": [s.to_dict() for s in sections],
        }
        if payload.get("error"):
            body["error"] = payload["error"]
        return JSONResponse(sanitize_for_json(body))

    @app.get("/api/goals")
    async def goals_api(exp_name: str = "", max_points: int | None = None) -> JSONResponse:
        points = _max_points(max_points)
        try:
            series = await _goal_series(exp_name, points)
        except SourceError as exc:
            raise _http_error(exc) from exc
        body = series.to_dict()
        body["categories"] = list(cfg.goal_categories)
        return JSONResponse(sanitize_for_json(body))

    @app.get("/api/suggestions")
    async def suggestions_api(q: str = "", exclude: str | None = None) -> JSONResponse:
        if not q:
            return JSONResponse({"query": q, "candidates": []})
        controller = SuggestionSearchController(
            src.fetch_candidates_async, limit=cfg.suggestion_limit, exclude=_split_list(exclude)
        )
        state = await controller.search(q)
        if state.error:
            raise HTTPException(status_code=502, detail=state.error)
        return JSONResponse(sanitize_for_json({"query": q, "candidates": state.candidates}))

    @app.get("/api/fulltests/{fulltest_id}/logs")
    async def fulltest_logs(fulltest_id: str) -> JSONResponse:
        try:
            raw = await _call(src.get_fulltest_logs, fulltest_id)
        except SourceError as exc:
            raise _http_error(exc) from exc
        pods = normalize_pod_logs(raw)
        if pods:
            body: dict[str, Any] = {
                "id": fulltest_id,
                "pods": {name: format_logs(text) for name, text in pods.items()},
            }
        else:
            body = {"id": fulltest_id, "logs": format_logs(logs_to_text(raw))}
        return JSONResponse(body)

    @app.get("/api/testsuites")
    async def test_suites_api(search: str = "", page: int = 1, limit: int | None = None) -> JSONResponse:
        try:
            rows, pagination = await _suite_page(
                src.list_test_suites, (), page, limit, search=search or None
            )
        except SourceError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(sanitize_for_json({"results": rows, "pagination": pagination.to_dict()}))

    @app.get("/api/testsuites/tests")
    async def suite_tests_api(suite_path: str = "", page: int = 1, limit: int | None = None) -> JSONResponse:
        if not suite_path:
            raise HTTPException(status_code=400, detail="suite_path is required")
        try:
            rows, pagination = await _suite_page(src.list_test_suite_tests, (suite_path,), page, limit)
        except SourceError as exc:
            raise _http_error(exc) from exc
        return JSONResponse(
            sanitize_for_json(
                {"suite_path": suite_path, "results": rows, "pagination": pagination.to_dict()}
            )
        )

    @app.get("/api/testsuites/plot")
    async def suite_plot_api(path: str = "") -> JSONResponse:
        if not path:
            raise HTTPException(status_code=400, detail="path is required")
        try:
            content = await _call(src.get_test_suite_plot, path)
        except SourceError as exc:
            raise _http_error(exc) from exc
        return JSONResponse({"path": path, "content": content})

    # -- live suggestions ------------------------------------------------------

    @app.websocket("/ws/suggestions")
    async def suggestions_ws(websocket: WebSocket) -> None:
        await websocket.accept()
        outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        controller = SuggestionSearchController(
            src.fetch_candidates_async,
            limit=cfg.suggestion_limit,
            debounce=cfg.suggestion_debounce_sec,
            on_change=lambda state: outbox.put_nowait(state.to_dict()),
        )

        async def sender() -> None:
            while True:
                message = await outbox.get()
                await websocket.send_json(sanitize_for_json(message))

        send_task = asyncio.create_task(sender())
        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000))
                text = frame.get("text")
                try:
                    if text is None:
                        raise ValueError("binary frames are not accepted")
                    message = SuggestionMessage.model_validate_json(text)
                except (ValidationError, ValueError) as exc:
                    logger.debug("suggestions socket: bad message: %s", exc)
                    outbox.put_nowait({"error": "Invalid message"})
                    continue
                action = message.action
                exclude_changed = False
                if message.exclude is not None:
                    exclude_changed = {str(x) for x in message.exclude} != controller.exclude
                    controller.set_exclude(message.exclude)
                if action == "query":
                    controller.set_query(message.query or "", force=exclude_changed)
                elif action == "next":
                    controller.highlight_next()
                elif action == "previous":
                    controller.highlight_previous()
                elif action == "select":
                    outbox.put_nowait({"selected": controller.select()})
        except WebSocketDisconnect:
            logger.debug("suggestions socket closed")
        finally:
            controller.cancel_pending()
            send_task.cancel()
            try:
                with suppress(asyncio.CancelledError):
                    await send_task
            except Exception as exc:
                logger.warning("suggestions socket: sender failed: %s", exc)

    return app
