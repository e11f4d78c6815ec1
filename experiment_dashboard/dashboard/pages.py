from __future__ import annotations

import html
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import urlencode

from ..core.diff import MISSING, SectionDiff, expand_value, is_expandable, render_value
from ..core.timeseries import AlignedSeries
from ..reporting.listing import QUICK_FILTERS, SORT_KEYS
from ..reporting.testsuites import Pagination
from ..utils.json_utils import script_safe_json

NAV_LINKS: tuple[tuple[str, str], ...] = (
    ("/", "Experiments"),
    ("/compare", "Compare"),
    ("/manager", "Manager"),
    ("/fulltests", "Fulltests"),
    ("/testsuites", "Test suites"),
)

CATEGORY_COLORS: dict[str, str] = {
    "open": "rgb(75,192,192)",
    "close": "rgb(255,99,132)",
    "reg": "rgb(54,162,235)",
}


def _escape_html(value: Any) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def _fmt_number(value: Any, digits: int = 2, percent: bool = False) -> str:
    if value is None or isinstance(value, bool):
        return "<span class='text-slate-500'>-</span>"
    try:
        fval = float(value)
    except (TypeError, ValueError):
        return _escape_html(value)
    if percent:
        return f"{fval * 100:.1f}%"
    return f"{fval:.{digits}f}"


def layout(title: str, body: str, active: str = "/", scripts: str = "") -> str:
    nav = "".join(
        f"<a class='px-3 py-2 rounded {'bg-slate-700 font-semibold' if href == active else 'text-slate-400'}' "
        f"href='{href}'>{label}</a>"
        for href, label in NAV_LINKS
    )
    return f"""<!DOCTYPE html>
<html lang='en'>
<head>
  <meta charset='utf-8' />
  <meta name='viewport' content='width=device-width, initial-scale=1' />
  <title>{_escape_html(title)}</title>
  <script src="https://cdn.tailwindcss.com"></script>
  <script src="https://cdn.plot.ly/plotly-2.32.0.min.js"></script>
</head>
<body class='bg-slate-900 text-slate-100'>
  <div class='max-w-6xl mx-auto py-8 px-4 space-y-6'>
    <nav class='flex gap-2 text-sm'>{nav}</nav>
    <header>
      <h1 class='text-2xl font-bold'>{_escape_html(title)}</h1>
    </header>
    {body}
  </div>
  {scripts}
</body>
</html>
"""


def error_banner(message: str | None) -> str:
    if not message:
        return ""
    return (
        "<div class='rounded bg-red-900/60 border border-red-700 px-4 py-2 text-sm' role='alert'>"
        f"{_escape_html(message)}</div>"
    )


# -- experiment list -----------------------------------------------------------


def _improvement_badges(record: Mapping[str, Any]) -> str:
    if str(record.get("status") or "").lower() == "invalid":
        return "<span class='px-2 py-1 rounded-full text-xs bg-red-900 text-red-200'>Invalid</span>"
    improvements = record.get("improvements") or []
    if not improvements:
        return "<span class='px-2 py-1 rounded-full text-xs bg-slate-700 text-slate-300'>No Improvement</span>"
    return " ".join(
        f"<span class='px-2 py-1 rounded-full text-xs bg-sky-900 text-sky-200'>{_escape_html(i)}</span>"
        for i in improvements
    )


def render_experiment_list(
    rows: Sequence[Mapping[str, Any]],
    *,
    count: int,
    page: int,
    total_pages: int,
    params: Mapping[str, Any],
    tags: Sequence[str],
    error: str | None = None,
) -> str:
    def link(**overrides: Any) -> str:
        merged = {k: v for k, v in {**params, **overrides}.items() if v not in (None, "", [])}
        return "/?" + urlencode(merged, doseq=True)

    selected_tags = set(params.get("tags") or [])
    active_filter = params.get("filter") or "all"
    quick = "".join(
        f"<a class='px-3 py-1 rounded-full border border-slate-600 text-xs "
        f"{'bg-slate-700' if f == active_filter else ''}' href='{_escape_html(link(filter=f, page=1))}'>"
        f"{_escape_html(f.replace('_', ' '))}</a>"
        for f in QUICK_FILTERS
    )
    tag_links = "".join(
        f"<a class='px-2 py-1 rounded-full text-xs "
        f"{'bg-sky-700' if t in selected_tags else 'bg-slate-700'}' "
        f"href='{_escape_html(link(tags=sorted(selected_tags ^ {t}), page=1))}'>{_escape_html(t)}</a>"
        for t in tags
    )
    body_rows = "".join(
        "<tr class='border-b border-slate-700'>"
        f"<td class='px-3 py-2 font-semibold'>{_escape_html(r.get('code') or r.get('id'))}</td>"
        f"<td class='px-3 py-2'>{_escape_html(r.get('date'))}</td>"
        f"<td class='px-3 py-2'>{_escape_html(r.get('author'))}</td>"
        f"<td class='px-3 py-2'>{_improvement_badges(r)}</td>"
        f"<td class='px-3 py-2 text-xs'>{_escape_html(', '.join(str(t) for t in r.get('tags') or []))}</td>"
        f"<td class='px-3 py-2'>{_fmt_number((r.get('financial') or {}).get('pnl'))}</td>"
        f"<td class='px-3 py-2'>{_fmt_number((r.get('financial') or {}).get('winRate'), percent=True)}</td>"
        f"<td class='px-3 py-2'>{_fmt_number((r.get('financial') or {}).get('sharpeRatio'), digits=3)}</td>"
        "</tr>"
        for r in rows
    ) or "<tr><td class='px-3 py-3 text-slate-400' colspan='8'>No experiments match</td></tr>"

    search_value = _escape_html(params.get("search"))
    sort_options = "".join(
        f"<option value='{k}' {'selected' if params.get('sort') == k else ''}>{k}</option>"
        for k in SORT_KEYS
    )
    export_qs = urlencode(
        {k: v for k, v in params.items() if k != "page" and v not in (None, "", [])}, doseq=True
    )
    pager = (
        f"<div class='flex justify-between text-sm'>"
        f"<span>{count} experiments · page {page} of {total_pages}</span>"
        f"<span class='space-x-3'>"
        + (f"<a class='text-sky-400' href='{_escape_html(link(page=page - 1))}'>Previous</a>" if page > 1 else "")
        + (
            f"<a class='text-sky-400' href='{_escape_html(link(page=page + 1))}'>Next</a>"
            if page < total_pages
            else ""
        )
        + "</span></div>"
    )
    body = f"""
    {error_banner(error)}
    <form class='flex flex-wrap gap-3 items-end text-sm' method='get' action='/'>
      <label class='flex flex-col gap-1'>Search
        <input class='bg-slate-800 rounded px-3 py-2' type='search' name='search' value='{search_value}' />
      </label>
      <label class='flex flex-col gap-1'>Sort
        <select class='bg-slate-800 rounded px-3 py-2' name='sort'>{sort_options}</select>
      </label>
      <label class='flex flex-col gap-1'>Direction
        <select class='bg-slate-800 rounded px-3 py-2' name='direction'>
          <option value='desc' {'selected' if params.get('direction') != 'asc' else ''}>desc</option>
          <option value='asc' {'selected' if params.get('direction') == 'asc' else ''}>asc</option>
        </select>
      </label>
      <input type='hidden' name='filter' value='{_escape_html(active_filter)}' />
      <button class='bg-slate-700 rounded px-4 py-2' type='submit'>Apply</button>
      <a class='text-sky-400 underline' href='/api/experiments/export.csv?{_escape_html(export_qs)}'>Export CSV</a>
    </form>
    <div class='flex flex-wrap gap-2'>{quick}</div>
    <div class='flex flex-wrap gap-1'>{tag_links}</div>
    <section class='bg-slate-800 rounded-lg shadow overflow-x-auto'>
      <table class='w-full text-sm text-left'>
        <thead class='text-xs uppercase bg-slate-700 text-slate-300'>
          <tr><th class='px-3 py-2'>Code</th><th class='px-3 py-2'>Date</th><th class='px-3 py-2'>Author</th>
          <th class='px-3 py-2'>Improvements</th><th class='px-3 py-2'>Tags</th><th class='px-3 py-2'>PnL</th>
          <th class='px-3 py-2'>Win Rate</th><th class='px-3 py-2'>Sharpe</th></tr>
        </thead>
        <tbody>{body_rows}</tbody>
      </table>
    </section>
    {pager}
    """
    return layout("Experiments", body, active="/")


# -- comparison ----------------------------------------------------------------


def value_cell(value: Any) -> str:
    text = _escape_html(render_value(value))
    if value is MISSING:
        return f"<span class='italic text-slate-500'>{text}</span>"
    if is_expandable(value):
        return (
            f"<details><summary class='cursor-pointer text-sky-400 font-mono'>{text}</summary>"
            f"<pre class='text-xs whitespace-pre-wrap'>{_escape_html(expand_value(value))}</pre></details>"
        )
    return f"<span class='font-mono'>{text}</span>"


KIND_STYLES: dict[str, str] = {
    "added": "text-emerald-400",
    "removed": "text-red-400",
    "changed": "text-amber-300",
}


def render_section(section: SectionDiff, max_items: int) -> str:
    rows = "".join(
        "<tr class='border-b border-slate-700 align-top'>"
        f"<td class='px-3 py-2 font-mono text-xs'>{_escape_html(c.path)}</td>"
        f"<td class='px-3 py-2 {KIND_STYLES.get(c.kind, '')}'>{c.kind}</td>"
        f"<td class='px-3 py-2'>{value_cell(c.before)}</td>"
        f"<td class='px-3 py-2'>{value_cell(c.after)}</td></tr>"
        for c in section.changes
    ) or "<tr><td class='px-3 py-3 text-slate-400' colspan='4'>No differences</td></tr>"
    note = (
        f"<p class='px-4 pb-3 text-xs text-amber-300'>Showing the first {max_items} differences.</p>"
        if section.truncated
        else ""
    )
    return f"""
    <section class='bg-slate-800 rounded-lg shadow'>
      <h2 class='px-4 pt-4 text-lg font-semibold capitalize'>{_escape_html(section.section)}</h2>
      <div class='overflow-x-auto'>
        <table class='w-full text-sm text-left'>
          <thead class='text-xs uppercase bg-slate-700 text-slate-300'>
            <tr><th class='px-3 py-2'>Path</th><th class='px-3 py-2'>Change</th>
            <th class='px-3 py-2'>Before</th><th class='px-3 py-2'>After</th></tr>
          </thead>
          <tbody>{rows}</tbody>
        </table>
      </div>
      {note}
    </section>
    """


SUGGEST_SCRIPT = """
<script>
(function () {
  const scheme = location.protocol === 'https:' ? 'wss' : 'ws';
  function item(text, cls) {
    const li = document.createElement("li");
    li.className = cls;
    li.textContent = text;
    return li;
  }
  document.querySelectorAll('input[data-suggest]').forEach(function (input) {
    const list = document.getElementById(input.dataset.suggest);
    const ws = new WebSocket(scheme + '://' + location.host + '/ws/suggestions');
    ws.onmessage = function (ev) {
      const msg = JSON.parse(ev.data);
      if (msg.selected) { input.value = msg.selected.code || msg.selected.id; list.replaceChildren(); return; }
      list.replaceChildren();
      if (msg.error) { list.append(item(msg.error, "px-2 py-1 text-red-400")); return; }
      (msg.candidates || []).forEach(function (c, i) {
        const cls = i === msg.highlighted_index ? "px-2 py-1 bg-slate-700" : "px-2 py-1";
        list.append(item(c.code || c.id, cls));
      });
    };
    input.addEventListener('input', function () {
      ws.send(JSON.stringify({action: 'query', query: input.value}));
    });
    input.addEventListener('keydown', function (ev) {
      const action = {ArrowDown: 'next', ArrowUp: 'previous', Enter: 'select'}[ev.key];
      if (!action) return;
      if (action === 'select' && !list.querySelector('.bg-slate-700')) return;
      ev.preventDefault();
      ws.send(JSON.stringify({action: action}));
    });
  });
})();
</script>
"""


def render_compare(
    id_a: str,
    id_b: str,
    sections: Sequence[SectionDiff],
    *,
    max_items: int,
    error: str | None = None,
) -> str:
    form = f"""
    <form class='flex flex-wrap gap-3 items-end text-sm' method='get' action='/compare'>
      <label class='flex flex-col gap-1 relative'>Experiment A
        <input class='bg-slate-800 rounded px-3 py-2' name='a' autocomplete='off' value='{_escape_html(id_a)}' data-suggest='suggest-a' />
        <ul id='suggest-a' class='absolute top-full mt-1 bg-slate-800 rounded text-xs z-10'></ul>
      </label>
      <label class='flex flex-col gap-1 relative'>Experiment B
        <input class='bg-slate-800 rounded px-3 py-2' name='b' autocomplete='off' value='{_escape_html(id_b)}' data-suggest='suggest-b' />
        <ul id='suggest-b' class='absolute top-full mt-1 bg-slate-800 rounded text-xs z-10'></ul>
      </label>
      <button class='bg-slate-700 rounded px-4 py-2' type='submit'>Compare</button>
    </form>
    """
    if sections:
        content = "".join(render_section(s, max_items) for s in sections)
    elif not error:
        content = "<p class='text-slate-400 text-sm'>Select two experiments to compare their parameters and summaries.</p>"
    else:
        content = ""
    body = form + error_banner(error) + content
    return layout("Experiment Comparison", body, active="/compare", scripts=SUGGEST_SCRIPT)


# -- manager -------------------------------------------------------------------


def render_manager(
    series: AlignedSeries | None,
    improved: Sequence[Mapping[str, Any]],
    *,
    exp_name: str = "",
    error: str | None = None,
) -> str:
    cards = ""
    chart_script = ""
    if series is not None:
        for category, sample in series.max_by_category.items():
            color = CATEGORY_COLORS.get(category, "rgb(148,163,184)")
            if sample is None:
                value_html = "<span class='italic text-slate-500'>(missing)</span>"
                meta = ""
            else:
                value_html = _fmt_number(sample.value, digits=6)
                meta = _escape_html(sample.source_label)
            cards += (
                f"<div class='flex-1 bg-slate-800 rounded-lg p-4 text-center' style='border:1px solid {color}'>"
                f"<h3 class='uppercase text-sm' style='color:{color}'>Max {_escape_html(category)}</h3>"
                f"<p class='text-2xl font-bold'>{value_html}</p>"
                f"<p class='text-xs text-slate-400'>{meta}</p></div>"
            )
        traces = [
            {
                "name": category,
                "x": series.timeline,
                "y": values,
                "customdata": series.per_category_labels.get(category, []),
                "color": CATEGORY_COLORS.get(category),
            }
            for category, values in series.per_category.items()
        ]
        chart_script = f"""
<script>
(function () {{
  const traces = {script_safe_json(traces)};
  const data = traces.map(function (t) {{
    return {{
      name: t.name, type: 'scatter', mode: 'lines+markers', connectgaps: false,
      x: t.x.map(function (ms) {{ return new Date(ms).toISOString(); }}),
      y: t.y, customdata: t.customdata,
      line: t.color ? {{color: t.color}} : undefined,
      hovertemplate: '%{{customdata}}<br>%{{y:.6f}}<extra>' + t.name + '</extra>'
    }};
  }});
  Plotly.newPlot('goal-chart', data, {{
    title: 'Goal values over time', paper_bgcolor: 'rgb(30,41,59)', plot_bgcolor: 'rgb(30,41,59)',
    font: {{color: 'rgb(226,232,240)'}}, legend: {{orientation: 'h'}}
  }}, {{responsive: true}});
}})();
</script>
"""
    improved_items = "".join(
        "<li class='p-2 bg-slate-900 rounded border-l-4 border-sky-500'>"
        f"<div class='font-semibold'>{_escape_html(r.get('code') or r.get('id'))}</div>"
        f"<div class='text-xs text-slate-400'>Improvements: {_escape_html(', '.join(str(i) for i in r.get('improvements') or []))}</div>"
        f"<div class='text-xs text-slate-500 flex justify-between'><span>{_escape_html(r.get('author'))}</span>"
        f"<span>{_escape_html(r.get('date'))}</span></div></li>"
        for r in improved
    ) or "<li class='text-slate-400 text-sm'>No improved experiments</li>"
    body = f"""
    <form class='flex gap-3 items-end text-sm' method='get' action='/manager'>
      <label class='flex flex-col gap-1'>Experiment
        <input class='bg-slate-800 rounded px-3 py-2' name='exp_name' value='{_escape_html(exp_name)}' />
      </label>
      <button class='bg-slate-700 rounded px-4 py-2' type='submit'>Filter</button>
    </form>
    {error_banner(error)}
    <div class='flex gap-4'>{cards}</div>
    <div class='grid grid-cols-3 gap-4'>
      <section class='bg-slate-800 rounded-lg p-4'>
        <h2 class='text-lg font-semibold mb-2'>Improved Experiments</h2>
        <ul class='space-y-2 max-h-96 overflow-y-auto'>{improved_items}</ul>
      </section>
      <section class='col-span-2 bg-slate-800 rounded-lg p-2'><div id='goal-chart' style='height:400px'></div></section>
    </div>
    """
    return layout("Experiment Manager", body, active="/manager", scripts=chart_script)


# -- fulltests -----------------------------------------------------------------


def render_fulltests(tests: Sequence[Mapping[str, Any]], *, error: str | None = None) -> str:
    rows = "".join(
        "<tr class='border-b border-slate-700'>"
        f"<td class='px-3 py-2 font-semibold'>{_escape_html(t.get('name') or t.get('code'))}</td>"
        f"<td class='px-3 py-2'>{_escape_html(t.get('status'))}</td>"
        f"<td class='px-3 py-2'>{_escape_html(t.get('_date'))}</td>"
        f"<td class='px-3 py-2'><a class='text-sky-400 underline' href='/api/fulltests/{_escape_html(t.get('id'))}/logs'>Logs</a></td>"
        "</tr>"
        for t in tests
    ) or "<tr><td class='px-3 py-3 text-slate-400' colspan='4'>No fulltests</td></tr>"
    body = f"""
    {error_banner(error)}
    <section class='bg-slate-800 rounded-lg shadow'>
      <table class='w-full text-sm text-left'>
        <thead class='text-xs uppercase bg-slate-700 text-slate-300'>
          <tr><th class='px-3 py-2'>Name</th><th class='px-3 py-2'>Status</th><th class='px-3 py-2'>Date</th><th class='px-3 py-2'>Logs</th></tr>
        </thead>
        <tbody>{rows}</tbody>
      </table>
    </section>
    """
    return layout("Fulltests", body, active="/fulltests")


def _progress_bar(pct: int) -> str:
    color = "bg-emerald-500" if pct >= 100 else "bg-sky-500"
    return (
        "<div class='w-full bg-slate-600 rounded h-2'>"
        f"<div class='{color} h-2 rounded' style='width: {pct}%'></div></div>"
        f"<span class='text-xs text-slate-400'>{pct}%</span>"
    )


def _suite_pager(path: str, params: Mapping[str, Any], pagination: Pagination) -> str:
    def link(page: int) -> str:
        query = {k: v for k, v in params.items() if v not in (None, "")}
        query["page"] = page
        return f"{path}?{urlencode(query)}"

    return (
        "<div class='flex items-center gap-4 text-sm'>"
        f"<span>{pagination.total_items} items · page {pagination.page} of {pagination.total_pages}</span>"
        + (
            f"<a class='text-sky-400' href='{_escape_html(link(pagination.page - 1))}'>Previous</a>"
            if pagination.has_prev
            else ""
        )
        + (
            f"<a class='text-sky-400' href='{_escape_html(link(pagination.page + 1))}'>Next</a>"
            if pagination.has_next
            else ""
        )
        + "</div>"
    )


def render_test_suites(
    suites: Sequence[Mapping[str, Any]],
    pagination: Pagination,
    *,
    search: str = "",
    error: str | None = None,
) -> str:
    def row(s: Mapping[str, Any]) -> str:
        tests_href = "/testsuites/tests?" + urlencode({"suite_path": s.get("path") or ""})
        plot = (
            f"<a class='text-sky-400 underline' href='{_escape_html('/testsuites/plot?' + urlencode({'path': s['plot_path']}))}'>Plot</a>"
            if s.get("plot_path")
            else ""
        )
        busy = (
            f" <span class='text-xs text-amber-400'>({s['in_progress']} in progress)</span>"
            if s.get("in_progress")
            else ""
        )
        return (
            "<tr class='border-b border-slate-700'>"
            f"<td class='px-3 py-2 font-semibold'>{_escape_html(s.get('asset'))}</td>"
            f"<td class='px-3 py-2'>{_escape_html(s.get('signal') or '-')}</td>"
            f"<td class='px-3 py-2'>{_escape_html(s.get('suite'))}</td>"
            f"<td class='px-3 py-2 w-40'>{_progress_bar(s.get('progress_pct', 0))}</td>"
            f"<td class='px-3 py-2'>{_escape_html(s.get('runs'))}{busy}</td>"
            f"<td class='px-3 py-2 space-x-3'><a class='text-sky-400 underline' href='{_escape_html(tests_href)}'>Tests</a>{plot}</td>"
            "</tr>"
        )

    rows = "".join(row(s) for s in suites) or (
        "<tr><td class='px-3 py-3 text-slate-400' colspan='6'>No test suites</td></tr>"
    )
    params = {"search": search, "limit": pagination.per_page}
    body = f"""
    {error_banner(error)}
    <form class='flex gap-2' method='get' action='/testsuites'>
      <input class='px-2 py-1 rounded bg-slate-800 border border-slate-600' name='search'
             placeholder='Search asset/suite/signal' value='{_escape_html(search)}' />
      <input type='hidden' name='limit' value='{pagination.per_page}' />
      <button class='px-3 py-1 rounded bg-slate-700' type='submit'>Apply</button>
      <a class='px-3 py-1 rounded bg-slate-700' href='/testsuites'>Clear</a>
    </form>
    <section class='bg-slate-800 rounded-lg shadow'>
      <table class='w-full text-sm text-left'>
        <thead class='text-xs uppercase bg-slate-700 text-slate-300'>
          <tr><th class='px-3 py-2'>Asset</th><th class='px-3 py-2'>Signal</th><th class='px-3 py-2'>Suite</th>
          <th class='px-3 py-2'>Progress</th><th class='px-3 py-2'>Runs (done/started/total)</th><th class='px-3 py-2'>Tests</th></tr>
        </thead>
        <tbody>{rows}</tbody>
      </table>
    </section>
    {_suite_pager('/testsuites', params, pagination)}
    """
    return layout("Test Suite Dashboard", body, active="/testsuites")


def render_suite_tests(
    suite_path: str,
    tests: Sequence[Mapping[str, Any]],
    pagination: Pagination,
    *,
    error: str | None = None,
) -> str:
    def row(t: Mapping[str, Any]) -> str:
        url = t.get("plot_url")
        plot = (
            f"<a class='text-sky-400 underline' target='_blank' rel='noopener noreferrer' href='{_escape_html(url)}'>View Plot</a>"
            if url
            else "<span class='text-slate-500'>Not ready</span>"
        )
        return (
            "<tr class='border-b border-slate-700'>"
            f"<td class='px-3 py-2 font-semibold'>{_escape_html(t.get('name'))}</td>"
            f"<td class='px-3 py-2 w-40'>{_progress_bar(t.get('progress_pct', 0))}</td>"
            f"<td class='px-3 py-2'>{_escape_html(t.get('runs'))}</td>"
            f"<td class='px-3 py-2 text-center'>{plot}</td>"
            "</tr>"
        )

    rows = "".join(row(t) for t in tests) or (
        "<tr><td class='px-3 py-3 text-slate-400' colspan='4'>No tests</td></tr>"
    )
    params = {"suite_path": suite_path, "limit": pagination.per_page}
    body = f"""
    {error_banner(error)}
    <p class='text-sm text-slate-400'>Suite <code>{_escape_html(suite_path)}</code> ·
      <a class='text-sky-400' href='/testsuites'>Back to suites</a></p>
    <section class='bg-slate-800 rounded-lg shadow'>
      <table class='w-full text-sm text-left'>
        <thead class='text-xs uppercase bg-slate-700 text-slate-300'>
          <tr><th class='px-3 py-2'>Test</th><th class='px-3 py-2'>Progress</th>
          <th class='px-3 py-2'>Runs (done/started/total)</th><th class='px-3 py-2'>Plot</th></tr>
        </thead>
        <tbody>{rows}</tbody>
      </table>
    </section>
    {_suite_pager('/testsuites/tests', params, pagination)}
    """
    return layout("Suite Tests", body, active="/testsuites")
