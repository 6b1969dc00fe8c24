"""
Application coordinator - events, effects and the state reducer

Every UI-visible field lives in an immutable AppState. The Textual loop is the
only caller of reduce(); background tasks report back through the event
types below and never touch the state directly.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

from .config import DEFAULT_TIMEOUT_MINUTES
from .models import PageCursor, WebhookRecord, parse_port, parse_timeout_minutes
from .render import detail_lines
from .tunnel import TunnelExpired, TunnelFailed, TunnelStarted

SETUP_FIELDS = ('port', 'subdomain', 'timeout')

VIEW_TABLE = 'table'
VIEW_LIST = 'list'


# Views

@dataclass(frozen=True)
class SetupView:
    focused_field: int = 0


@dataclass(frozen=True)
class RunningView:
    selected_index: int = 0


@dataclass(frozen=True)
class DetailView:
    selected_index: int
    record: WebhookRecord
    lines: Tuple[str, ...]
    scroll_offset: int = 0


ViewState = Union[SetupView, RunningView, DetailView]


@dataclass(frozen=True)
class TunnelStatus:
    """Coordinator's mirror of the tunnel session."""

    url: str = ''
    running: bool = False
    starting: bool = False
    expired: bool = False
    error: str = ''
    timeout: float = DEFAULT_TIMEOUT_MINUTES * 60
    started_at: Optional[datetime] = None
    generation: int = 0

    def remaining(self, now: datetime) -> float:
        if not self.started_at:
            return self.timeout
        return max(0.0, self.timeout - (now - self.started_at).total_seconds())


@dataclass(frozen=True)
class AppState:
    view: ViewState = field(default_factory=SetupView)
    webhooks: Tuple[WebhookRecord, ...] = ()
    cursor: PageCursor = field(default_factory=PageCursor)
    tunnel: TunnelStatus = field(default_factory=TunnelStatus)
    view_mode: str = VIEW_TABLE
    public_ip: str = ''
    fetching_ip: bool = True
    server_running: bool = False
    server_error: str = ''
    store_error: str = ''
    setup_error: str = ''
    requested_port: int = 0
    requested_subdomain: str = ''
    viewport_width: int = 76
    viewport_height: int = 20
    quitting: bool = False

    @property
    def selected_index(self) -> int:
        if isinstance(self.view, (RunningView, DetailView)):
            return self.view.selected_index
        return 0

    @property
    def selected(self) -> Optional[WebhookRecord]:
        idx = self.selected_index
        if 0 <= idx < len(self.webhooks):
            return self.webhooks[idx]
        return None


# Events

@dataclass(frozen=True)
class FocusMoved:
    step: int = 1


@dataclass(frozen=True)
class SetupConfirmed:
    port: str = ''
    subdomain: str = ''
    timeout: str = ''


@dataclass(frozen=True)
class SelectionMoved:
    step: int


@dataclass(frozen=True)
class SelectionJumped:
    to_end: bool


@dataclass(frozen=True)
class DetailOpened:
    pass


@dataclass(frozen=True)
class DetailClosed:
    pass


@dataclass(frozen=True)
class DetailScrolled:
    lines: int = 0
    pages: float = 0.0


@dataclass(frozen=True)
class DetailJumped:
    to_end: bool


@dataclass(frozen=True)
class PageNext:
    pass


@dataclass(frozen=True)
class PagePrevious:
    pass


@dataclass(frozen=True)
class ReloadRequested:
    pass


@dataclass(frozen=True)
class ClearRequested:
    pass


@dataclass(frozen=True)
class ViewToggled:
    pass


@dataclass(frozen=True)
class ReconnectRequested:
    pass


@dataclass(frozen=True)
class QuitRequested:
    pass


@dataclass(frozen=True)
class Resized:
    width: int
    height: int


@dataclass(frozen=True)
class PublicIPFetched:
    ip: str


@dataclass(frozen=True)
class PublicIPFailed:
    message: str


@dataclass(frozen=True)
class ServerStarted:
    port: int


@dataclass(frozen=True)
class ServerFailed:
    message: str


@dataclass(frozen=True)
class WebhookReceived:
    record: WebhookRecord


@dataclass(frozen=True)
class PageLoaded:
    records: Tuple[WebhookRecord, ...]
    total_count: int
    page: int


@dataclass(frozen=True)
class PageLoadFailed:
    message: str


Event = Any


# Effects

@dataclass(frozen=True)
class FetchPublicIP:
    pass


@dataclass(frozen=True)
class StartServer:
    port: int


@dataclass(frozen=True)
class StartTunnel:
    port: int
    subdomain: str
    timeout: float


@dataclass(frozen=True)
class ReconnectTunnel:
    pass


@dataclass(frozen=True)
class SubscribeFeed:
    pass


@dataclass(frozen=True)
class LoadPage:
    page: int


@dataclass(frozen=True)
class SaveSettings:
    port: str
    subdomain: str
    timeout_minutes: str


@dataclass(frozen=True)
class Shutdown:
    pass


Effect = Union[
    FetchPublicIP, StartServer, StartTunnel, ReconnectTunnel,
    SubscribeFeed, LoadPage, SaveSettings, Shutdown,
]

Result = Tuple[AppState, List[Effect]]


def initial_state() -> AppState:
    return AppState()


def initial_effects() -> List[Effect]:
    return [FetchPublicIP(), LoadPage(0)]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _max_scroll(state: AppState, view: DetailView) -> int:
    return max(0, len(view.lines) - state.viewport_height)


# Setup

def _on_focus_moved(state: AppState, event: FocusMoved) -> Result:
    if not isinstance(state.view, SetupView):
        return state, []
    focused = (state.view.focused_field + event.step) % len(SETUP_FIELDS)
    return replace(state, view=SetupView(focused_field=focused)), []


def _on_setup_confirmed(state: AppState, event: SetupConfirmed) -> Result:
    if not isinstance(state.view, SetupView):
        return state, []
    try:
        port = parse_port(event.port)
    except ValueError:
        return replace(state, setup_error=f"Invalid port: {event.port.strip()}"), []

    subdomain = event.subdomain.strip()
    timeout = parse_timeout_minutes(event.timeout) * 60
    state = replace(
        state,
        view=RunningView(0),
        setup_error='',
        requested_port=port,
        requested_subdomain=subdomain,
        tunnel=TunnelStatus(starting=True, timeout=timeout, generation=state.tunnel.generation),
    )
    return state, [
        StartTunnel(port=port, subdomain=subdomain, timeout=timeout),
        StartServer(port=port),
        SaveSettings(port=event.port.strip(), subdomain=subdomain, timeout_minutes=event.timeout.strip()),
    ]


# Running

def _on_selection_moved(state: AppState, event: SelectionMoved) -> Result:
    if not isinstance(state.view, RunningView) or not state.webhooks:
        return state, []
    idx = _clamp(state.view.selected_index + event.step, 0, len(state.webhooks) - 1)
    return replace(state, view=RunningView(idx)), []


def _on_selection_jumped(state: AppState, event: SelectionJumped) -> Result:
    if not isinstance(state.view, RunningView) or not state.webhooks:
        return state, []
    idx = len(state.webhooks) - 1 if event.to_end else 0
    return replace(state, view=RunningView(idx)), []


def _on_detail_opened(state: AppState, event: DetailOpened) -> Result:
    if not isinstance(state.view, RunningView):
        return state, []
    record = state.selected
    if record is None:
        return state, []
    lines = tuple(detail_lines(record, state.viewport_width))
    view = DetailView(selected_index=state.view.selected_index, record=record, lines=lines)
    return replace(state, view=view), []


def _on_page_next(state: AppState, event: PageNext) -> Result:
    if not isinstance(state.view, RunningView) or not state.cursor.has_next():
        return state, []
    page = state.cursor.current_page + 1
    return replace(state, cursor=replace(state.cursor, current_page=page)), [LoadPage(page)]


def _on_page_previous(state: AppState, event: PagePrevious) -> Result:
    if not isinstance(state.view, RunningView) or not state.cursor.has_previous():
        return state, []
    page = state.cursor.current_page - 1
    return replace(state, cursor=replace(state.cursor, current_page=page)), [LoadPage(page)]


def _on_reload(state: AppState, event: ReloadRequested) -> Result:
    if not isinstance(state.view, RunningView):
        return state, []
    return state, [LoadPage(0)]


def _on_clear(state: AppState, event: ClearRequested) -> Result:
    if not isinstance(state.view, RunningView):
        return state, []
    return replace(state, webhooks=(), view=RunningView(0)), []


def _on_view_toggled(state: AppState, event: ViewToggled) -> Result:
    if not isinstance(state.view, RunningView):
        return state, []
    mode = VIEW_LIST if state.view_mode == VIEW_TABLE else VIEW_TABLE
    return replace(state, view_mode=mode), []


def _on_reconnect(state: AppState, event: ReconnectRequested) -> Result:
    tunnel = state.tunnel
    if not isinstance(state.view, RunningView) or tunnel.running or tunnel.starting:
        return state, []
    tunnel = replace(tunnel, starting=True, expired=False, error='')
    return replace(state, tunnel=tunnel), [ReconnectTunnel()]


# Detail

def _on_detail_closed(state: AppState, event: DetailClosed) -> Result:
    if not isinstance(state.view, DetailView):
        return state, []
    idx = _clamp(state.view.selected_index, 0, max(0, len(state.webhooks) - 1))
    return replace(state, view=RunningView(idx)), []


def _on_detail_scrolled(state: AppState, event: DetailScrolled) -> Result:
    view = state.view
    if not isinstance(view, DetailView):
        return state, []
    delta = event.lines + int(event.pages * state.viewport_height)
    offset = _clamp(view.scroll_offset + delta, 0, _max_scroll(state, view))
    return replace(state, view=replace(view, scroll_offset=offset)), []


def _on_detail_jumped(state: AppState, event: DetailJumped) -> Result:
    view = state.view
    if not isinstance(view, DetailView):
        return state, []
    offset = _max_scroll(state, view) if event.to_end else 0
    return replace(state, view=replace(view, scroll_offset=offset)), []


# Any view

def _on_quit(state: AppState, event: QuitRequested) -> Result:
    if state.quitting:
        return state, []
    return replace(state, quitting=True), [Shutdown()]


def _on_resized(state: AppState, event: Resized) -> Result:
    state = replace(state, viewport_width=max(1, event.width), viewport_height=max(1, event.height))
    view = state.view
    if isinstance(view, DetailView):
        lines = tuple(detail_lines(view.record, state.viewport_width))
        view = replace(view, lines=lines)
        view = replace(view, scroll_offset=_clamp(view.scroll_offset, 0, _max_scroll(state, view)))
        state = replace(state, view=view)
    return state, []


# Background results

def _on_public_ip(state: AppState, event: PublicIPFetched) -> Result:
    return replace(state, public_ip=event.ip, fetching_ip=False), []


def _on_public_ip_failed(state: AppState, event: PublicIPFailed) -> Result:
    return replace(state, public_ip="Unable to fetch", fetching_ip=False), []


def _on_tunnel_started(state: AppState, event: TunnelStarted) -> Result:
    tunnel = replace(
        state.tunnel,
        url=event.url,
        running=True,
        starting=False,
        expired=False,
        error='',
        started_at=event.started_at,
        generation=event.generation,
    )
    return replace(state, tunnel=tunnel), []


def _on_tunnel_failed(state: AppState, event: TunnelFailed) -> Result:
    tunnel = replace(state.tunnel, running=False, starting=False, error=event.message)
    return replace(state, tunnel=tunnel), []


def _on_tunnel_expired(state: AppState, event: TunnelExpired) -> Result:
    tunnel = state.tunnel
    if event.generation != tunnel.generation or not tunnel.running or tunnel.expired:
        return state, []
    return replace(state, tunnel=replace(tunnel, running=False, expired=True)), []


def _on_server_started(state: AppState, event: ServerStarted) -> Result:
    return replace(state, server_running=True, server_error=''), [SubscribeFeed()]


def _on_server_failed(state: AppState, event: ServerFailed) -> Result:
    return replace(state, server_running=False, server_error=event.message), []


def _on_webhook_received(state: AppState, event: WebhookReceived) -> Result:
    # Prepended without touching the cursor; counts resync on the next reload.
    return replace(state, webhooks=(event.record,) + state.webhooks), []


def _on_page_loaded(state: AppState, event: PageLoaded) -> Result:
    view = state.view
    # An open detail keeps its record; the selection is clamped when it closes.
    if isinstance(view, RunningView):
        view = RunningView(0)
    return replace(
        state,
        webhooks=tuple(event.records),
        cursor=state.cursor.loaded(event.page, event.total_count),
        store_error='',
        view=view,
    ), []


def _on_page_load_failed(state: AppState, event: PageLoadFailed) -> Result:
    return replace(state, store_error=event.message), []


_HANDLERS: Dict[Type, Callable[[AppState, Any], Result]] = {
    FocusMoved: _on_focus_moved,
    SetupConfirmed: _on_setup_confirmed,
    SelectionMoved: _on_selection_moved,
    SelectionJumped: _on_selection_jumped,
    DetailOpened: _on_detail_opened,
    DetailClosed: _on_detail_closed,
    DetailScrolled: _on_detail_scrolled,
    DetailJumped: _on_detail_jumped,
    PageNext: _on_page_next,
    PagePrevious: _on_page_previous,
    ReloadRequested: _on_reload,
    ClearRequested: _on_clear,
    ViewToggled: _on_view_toggled,
    ReconnectRequested: _on_reconnect,
    QuitRequested: _on_quit,
    Resized: _on_resized,
    PublicIPFetched: _on_public_ip,
    PublicIPFailed: _on_public_ip_failed,
    TunnelStarted: _on_tunnel_started,
    TunnelFailed: _on_tunnel_failed,
    TunnelExpired: _on_tunnel_expired,
    ServerStarted: _on_server_started,
    ServerFailed: _on_server_failed,
    WebhookReceived: _on_webhook_received,
    PageLoaded: _on_page_loaded,
    PageLoadFailed: _on_page_load_failed,
}


def reduce(state: AppState, event: Event) -> Result:
    """Apply one event. Unknown events leave the state untouched."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        return state, []
    return handler(state, event)
