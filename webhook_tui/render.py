"""
Renderer - pure functions from coordinator state to Rich markup
"""
import json
from datetime import datetime
from typing import List, Optional, Tuple

from rich.markup import escape

from .models import WebhookRecord

TITLE = "🪝 Webhook Listener TUI"

SETUP_HELP = "Tab: switch fields • Enter: start • q: quit"
RUNNING_HELP = "j/k: select • n/p: page • Enter: details • t: view • r: reconnect • l: load DB • c: clear • q: quit"
DETAIL_HELP = "↑/↓/j/k: scroll • ^f/^b/^d/^u: page • g/G: top/bottom • Esc: back • q: quit"

METHOD_COLORS = {
    'GET': 'color(82)',
    'POST': 'color(39)',
    'PUT': 'color(214)',
    'DELETE': 'color(196)',
    'PATCH': 'color(141)',
}

# Table column widths
ID_W, TIME_W, METHOD_W, PATH_W, BODY_W = 4, 10, 8, 20, 40
TABLE_ROWS = 15
LIST_ITEMS = 10


def header(text: str) -> str:
    return f"[bold color(39)]{escape(text)}[/]"


def info(text: str) -> str:
    return f"[color(241)]{escape(text)}[/]"


def highlight(text: str) -> str:
    return f"[color(212)]{escape(text)}[/]"


def help_line(text: str) -> str:
    return f"[italic color(241)]{escape(text)}[/]"


def method_markup(method: str) -> str:
    color = METHOD_COLORS.get(method)
    if not color:
        return escape(method)
    return f"[{color}]{escape(method)}[/]"


def truncate(s: str, max_len: int) -> str:
    """Single-line preview of s, cut to max_len characters plus an ellipsis."""
    s = s.replace("\r", "").replace("\n", " ")
    if len(s) <= max_len:
        return s
    return s[:max_len] + "..."


def format_remaining(seconds: float) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def countdown_style(seconds: float) -> str:
    if seconds < 60:
        return 'color(196)'
    if seconds < 5 * 60:
        return 'color(214)'
    return 'color(82)'


def visible_window(total: int, selected: int, size: int) -> Tuple[int, int]:
    """Slice bounds of at most size items that keep selected on screen."""
    if total <= size:
        return 0, total
    start = max(0, min(selected - size + 1, total - size)) if selected >= size else 0
    return start, start + size


def render_setup(state) -> str:
    lines = [header("Public IP Address")]
    if state.fetching_ip:
        lines.append("… Fetching...")
    else:
        lines.append(highlight(state.public_ip))
        lines.append(info("(Use this for webhook authentication if needed)"))
    return "\n".join(lines)


def render_setup_error(state) -> str:
    if not state.setup_error:
        return ""
    return f"[color(196)]✗ {escape(state.setup_error)}[/]"


def _server_line(state) -> str:
    if state.server_error:
        return f"  Server: [color(196)]✗[/] {escape(state.server_error)}"
    if state.server_running:
        return f"  Server: [color(82)]●[/] on port {state.requested_port}"
    return "  Server: … Starting..."


def _tunnel_lines(state, now: datetime) -> List[str]:
    tunnel = state.tunnel
    if tunnel.error:
        return [f"  Tunnel: [color(196)]✗[/] {escape(tunnel.error)} - press 'r' to retry"]
    if tunnel.expired:
        minutes = int(tunnel.timeout // 60)
        return [
            f"  Tunnel: [color(196)]● DISCONNECTED[/] (auto-shutdown after {minutes}m) - press 'r' to reconnect",
            f"  Last URL: {info(tunnel.url)}",
        ]
    if tunnel.running:
        remaining = tunnel.remaining(now)
        return [
            f"  Tunnel: [color(82)]●[/] {escape(tunnel.url)}",
            f"  Webhook URL: {highlight(tunnel.url.rstrip('/') + '/webhook')}",
            f"  Expires in: [{countdown_style(remaining)}]{format_remaining(remaining)}[/]",
        ]
    subdomain_info = f" (subdomain: {escape(state.requested_subdomain)})" if state.requested_subdomain else ""
    return [f"  Tunnel: … Starting localtunnel...{subdomain_info}"]


def _table_rows(webhooks, selected: int) -> List[str]:
    title = (
        f"{'ID':<{ID_W}} {'Time':<{TIME_W}} {'Method':<{METHOD_W}} "
        f"{'Path':<{PATH_W}} {'Body Preview':<{BODY_W}}"
    )
    rows = [f"[bold underline color(39)]{escape(title)}[/]"]
    start, end = visible_window(len(webhooks), selected, TABLE_ROWS)
    for i in range(start, end):
        wh = webhooks[i]
        preview = truncate(wh.body, BODY_W - 3) or "(empty)"
        path = truncate(wh.path, PATH_W - 3)
        stamp = wh.timestamp.strftime("%H:%M:%S")
        if i == selected:
            row = (
                f"{wh.id:<{ID_W}} {stamp:<{TIME_W}} {wh.method:<{METHOD_W}} "
                f"{path:<{PATH_W}} {preview:<{BODY_W}}"
            )
            rows.append(f"[color(212) on color(236)]{escape(row)}[/]")
        else:
            padding = " " * max(0, METHOD_W - len(wh.method))
            rows.append(
                f"{wh.id:<{ID_W}} {stamp:<{TIME_W}} {method_markup(wh.method)}{padding} "
                f"{escape(f'{path:<{PATH_W}}')} {escape(preview)}"
            )
    return rows


def _list_items(webhooks, selected: int) -> List[str]:
    items = []
    start, end = visible_window(len(webhooks), selected, LIST_ITEMS)
    for i in range(start, end):
        wh = webhooks[i]
        preview = truncate(wh.body, 50) or "(empty body)"
        marker = "[color(205)]▌[/]" if i == selected else " "
        items.append(
            f"{marker} #{wh.id} {wh.timestamp.strftime('%H:%M:%S')} "
            f"{method_markup(wh.method)} {escape(wh.path)}"
        )
        items.append(f"{marker}     {info(preview)}")
        items.append("")
    return items


def render_running(state, now: Optional[datetime] = None) -> str:
    now = now or datetime.now().astimezone()
    lines = [header("Status")]
    lines.append(f"  Public IP: {highlight(state.public_ip or '…')}")
    lines.append(_server_line(state))
    lines.extend(_tunnel_lines(state, now))
    lines.append("")

    cursor = state.cursor
    count = f"{cursor.total_count} total" if cursor.total_count > 0 else str(len(state.webhooks))
    page_info = f" Page {cursor.current_page + 1}/{cursor.total_pages} |" if cursor.total_pages > 1 else ""
    mode = "Table" if state.view_mode == 'table' else "List"
    lines.append(header(f"Webhooks ({count})") + info(f"{page_info} [{mode}]"))

    if state.store_error:
        lines.append(f"  [color(196)]✗[/] {escape(state.store_error)}")

    selected = state.selected_index
    if not state.webhooks:
        lines.append(info("  Waiting for webhooks..."))
    elif state.view_mode == 'table':
        lines.extend(_table_rows(state.webhooks, selected))
    else:
        lines.extend(_list_items(state.webhooks, selected))

    lines.append("")
    lines.append(help_line(RUNNING_HELP))
    return "\n".join(lines)


def _wrap(text: str, width: Optional[int]) -> List[str]:
    if not width or width <= 0:
        return [text]
    if not text:
        return [""]
    return [text[i:i + width] for i in range(0, len(text), width)]


def detail_lines(record: WebhookRecord, width: Optional[int] = None) -> List[str]:
    """Markup lines for the detail view, hard-wrapped to width."""
    lines: List[str] = []

    def styled(text: str, style: str) -> str:
        return f"[{style}]{escape(text)}[/]" if style else escape(text)

    def add(label: str, value: str, style: str = ''):
        room = max(1, width - len(label)) if width else len(value)
        first, rest = value[:room], value[room:]
        if label:
            indent = label[:len(label) - len(label.lstrip())]
            lines.append(f"{indent}{highlight(label.strip())} {styled(first, style)}")
        else:
            lines.append(styled(first, style))
        if rest:
            lines.extend(styled(chunk, style) for chunk in _wrap(rest, width))

    lines.append(f"{highlight('Method:')} {method_markup(record.method)}")
    add("Path: ", record.path)
    add("Time: ", record.timestamp.isoformat())
    lines.append("")

    lines.append(header("Headers"))
    for name, value in record.headers.items():
        add(f"  {name}: ", value)
    lines.append("")

    lines.append(header("Body"))
    if record.has_json:
        pretty = json.dumps(record.body_json, indent=2, ensure_ascii=False)
        for raw in pretty.splitlines():
            add("", raw, style='color(252)')
    elif record.body:
        for raw in record.body.splitlines() or [record.body]:
            add("", raw, style='color(252)')
    else:
        lines.append(info("(empty)"))
    return lines


def render_detail(state) -> str:
    view = state.view
    out = [header(f"Webhook #{view.record.id} Details"), ""]
    height = state.viewport_height
    window = view.lines[view.scroll_offset:view.scroll_offset + height]
    out.extend(window)
    out.extend([""] * max(0, height - len(window)))
    out.append("")

    max_offset = max(0, len(view.lines) - height)
    percent = 100 if max_offset == 0 else int(view.scroll_offset * 100 / max_offset)
    out.append(info(f"─── {percent}% ───"))
    out.append(help_line(DETAIL_HELP))
    return "\n".join(out)
