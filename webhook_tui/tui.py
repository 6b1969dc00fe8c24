import threading
from pathlib import Path
from typing import Callable, Optional

from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.events import Resize
from textual.widgets import ContentSwitcher, Footer, Header, Input, Label, Static

from . import render
from .config import CONFIG_FILE, Settings
from .feed import LiveFeed
from .log import get_logger
from .public_ip import PublicIPError, fetch_public_ip
from .server import IngestionServer
from .state import (
    SETUP_FIELDS,
    ClearRequested,
    DetailClosed,
    DetailJumped,
    DetailOpened,
    DetailScrolled,
    DetailView,
    FetchPublicIP,
    FocusMoved,
    LoadPage,
    PageLoaded,
    PageLoadFailed,
    PageNext,
    PagePrevious,
    PublicIPFailed,
    PublicIPFetched,
    QuitRequested,
    ReconnectRequested,
    ReconnectTunnel,
    ReloadRequested,
    Resized,
    RunningView,
    SaveSettings,
    SelectionJumped,
    SelectionMoved,
    ServerFailed,
    ServerStarted,
    SetupConfirmed,
    SetupView,
    Shutdown,
    StartServer,
    StartTunnel,
    SubscribeFeed,
    ViewToggled,
    WebhookReceived,
    initial_effects,
    initial_state,
    reduce,
)
from .store import RecordStore, StorageError
from .tunnel import TunnelError, TunnelFailed, TunnelSessionManager

FIELD_IDS = {
    'port': 'port-input',
    'subdomain': 'subdomain-input',
    'timeout': 'timeout-input',
}


class SetupForm(Vertical):
    """Port, subdomain and timeout inputs plus the public IP panel."""

    def __init__(self, settings: Settings, **kwargs):
        super().__init__(**kwargs)
        self.settings = settings

    def compose(self) -> ComposeResult:
        yield Static(id="ip-panel")
        yield Label("Local Port", classes="field-label")
        yield Input(value=self.settings.port, placeholder="8098", id="port-input")
        yield Static("Port for the local webhook server", classes="hint")
        yield Label("Subdomain (optional)", classes="field-label")
        yield Input(value=self.settings.subdomain, placeholder="my-webhook-listener", id="subdomain-input")
        yield Static("Custom subdomain for localtunnel (e.g., my-app → my-app.loca.lt)", classes="hint")
        yield Label("Tunnel Timeout (minutes)", classes="field-label")
        yield Input(value=self.settings.timeout_minutes, placeholder="30", id="timeout-input")
        yield Static("Auto-disconnect tunnel after this many minutes (default: 30)", classes="hint")
        yield Static(id="setup-error")
        yield Static(render.help_line(render.SETUP_HELP), classes="help")


class WebhookApp(App):
    """Webhook listener: setup form, live list and detail view."""

    CSS = """
    Screen {
        background: $surface;
    }

    Header {
        background: $accent;
    }

    SetupForm {
        padding: 1 2;
        height: auto;
    }

    #ip-panel {
        margin-bottom: 1;
    }

    .field-label {
        text-style: bold;
        color: $accent;
    }

    SetupForm Input {
        width: 40;
    }

    .hint {
        color: $text-muted;
        margin-bottom: 1;
    }

    #setup-error {
        height: auto;
    }

    #running, #detail {
        padding: 1 2;
    }
    """

    BINDINGS = [
        Binding("q", "quit_app", "Quit", show=True, priority=True),
        Binding("ctrl+c", "quit_app", "Quit", show=False, priority=True),
        Binding("tab", "focus_move(1)", "Next field", show=False, priority=True),
        Binding("shift+tab", "focus_move(-1)", "Previous field", show=False, priority=True),
        Binding("enter", "open_detail", "Details", show=False),
        Binding("escape", "back", "Back", show=False),
        Binding("j,down", "down", "Down", show=False),
        Binding("k,up", "up", "Up", show=False),
        Binding("n,right", "page_next", "Next page", show=False),
        Binding("p,left", "page_previous", "Previous page", show=False),
        Binding("t", "toggle_view", "View", show=False),
        Binding("r", "reconnect", "Reconnect", show=False),
        Binding("l", "reload", "Load DB", show=False),
        Binding("c", "clear", "Clear", show=False),
        Binding("g", "top", "Top", show=False),
        Binding("G", "bottom", "Bottom", show=False),
        Binding("ctrl+d,pagedown", "scroll_pages(0.5)", "Half page down", show=False),
        Binding("ctrl+u,pageup", "scroll_pages(-0.5)", "Half page up", show=False),
        Binding("ctrl+f", "scroll_pages(1)", "Page down", show=False),
        Binding("ctrl+b", "scroll_pages(-1)", "Page up", show=False),
    ]

    TITLE = render.TITLE

    def __init__(
        self,
        store: RecordStore,
        manager: Optional[TunnelSessionManager] = None,
        feed: Optional[LiveFeed] = None,
        settings: Optional[Settings] = None,
        config_file: Path = CONFIG_FILE,
        ip_fetcher: Callable[[], str] = fetch_public_ip,
        server_factory: Callable[..., IngestionServer] = IngestionServer,
    ):
        super().__init__()
        self.logger = get_logger('app')
        self.store = store
        self.feed = feed or LiveFeed()
        self.manager = manager or TunnelSessionManager()
        self.manager.on_expired = self._post
        self.config_file = config_file
        self.settings = settings or Settings.load(config_file)
        self.ip_fetcher = ip_fetcher
        self.server_factory = server_factory
        self.server: Optional[IngestionServer] = None
        self.state = initial_state()
        self._feed_stop = threading.Event()
        self._closing = False
        self._mounted = False

    def compose(self) -> ComposeResult:
        yield Header()
        with ContentSwitcher(initial="setup"):
            yield SetupForm(self.settings, id="setup")
            yield Static(id="running")
            yield Static(id="detail")
        yield Footer()

    def on_mount(self) -> None:
        self._mounted = True
        self._dispatch_effects(initial_effects())
        self.set_interval(1.0, self._tick)
        self._refresh_view()

    def on_resize(self, event: Resize) -> None:
        # header, title, blank lines, scroll indicator and help around the viewport
        self.apply_event(Resized(width=event.size.width - 4, height=event.size.height - 9))

    def on_unmount(self) -> None:
        self._stop_background()

    # Event loop

    def apply_event(self, event) -> None:
        """Reduce one event on the UI thread and run the resulting effects."""
        previous = self.state
        self.state, effects = reduce(self.state, event)
        self._dispatch_effects(effects)
        if self._mounted and self.state is not previous:
            self._refresh_view()

    def _post(self, event) -> None:
        """Deliver an event from a background thread."""
        if self._closing:
            return
        self.call_from_thread(self.apply_event, event)

    def _dispatch_effects(self, effects) -> None:
        for effect in effects:
            if isinstance(effect, FetchPublicIP):
                self.run_worker(self._fetch_public_ip, thread=True, group="ip")
            elif isinstance(effect, StartServer):
                self.run_worker(lambda port=effect.port: self._start_server(port), thread=True, group="server")
            elif isinstance(effect, StartTunnel):
                self.run_worker(
                    lambda e=effect: self._post(self.manager.start(e.port, e.subdomain, e.timeout)),
                    thread=True,
                    group="tunnel",
                )
            elif isinstance(effect, ReconnectTunnel):
                self.run_worker(self._reconnect_tunnel, thread=True, group="tunnel")
            elif isinstance(effect, SubscribeFeed):
                self.run_worker(self._consume_feed, thread=True, group="feed")
            elif isinstance(effect, LoadPage):
                self.run_worker(lambda page=effect.page: self._load_page(page), thread=True, group="page")
            elif isinstance(effect, SaveSettings):
                self.run_worker(lambda e=effect: self._save_settings(e), thread=True, group="settings")
            elif isinstance(effect, Shutdown):
                self._stop_background()
                self.exit()

    # Background work

    def _fetch_public_ip(self) -> None:
        try:
            self._post(PublicIPFetched(self.ip_fetcher()))
        except PublicIPError as e:
            self.logger.error(f"public IP lookup failed: {e}")
            self._post(PublicIPFailed(str(e)))

    def _start_server(self, port: int) -> None:
        try:
            first_id = self.store.last_id() + 1
        except StorageError as e:
            self.logger.error(str(e))
            self._post(ServerFailed(f"Cannot start the server: {e}"))
            return
        server = self.server_factory(self.store, self.feed, port, first_id=first_id)
        try:
            server.start()
        except OSError as e:
            self.logger.error(f"failed to bind port {port}: {e}")
            self._post(ServerFailed(f"Failed to listen on port {port}: {e}"))
            return
        self.server = server
        self._post(ServerStarted(port))

    def _reconnect_tunnel(self) -> None:
        try:
            result = self.manager.reconnect()
        except TunnelError as e:
            result = TunnelFailed(str(e))
        self._post(result)

    def _consume_feed(self) -> None:
        for record in self.feed.subscribe(self._feed_stop):
            self._post(WebhookReceived(record))

    def _load_page(self, page: int) -> None:
        try:
            records, total = self.store.query_page(page)
        except StorageError as e:
            self.logger.error(str(e))
            self._post(PageLoadFailed(str(e)))
            return
        self._post(PageLoaded(tuple(records), total, page))

    def _save_settings(self, effect: SaveSettings) -> None:
        settings = Settings(effect.port, effect.subdomain, effect.timeout_minutes)
        try:
            settings.save(self.config_file)
        except OSError as e:
            self.logger.error(f"failed to save settings: {e}")

    def _stop_background(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._feed_stop.set()
        self.manager.shutdown()
        if self.server is not None:
            self.server.stop()

    # View

    def _tick(self) -> None:
        if isinstance(self.state.view, RunningView):
            self._refresh_view()

    def _refresh_view(self) -> None:
        state = self.state
        switcher = self.query_one(ContentSwitcher)
        if isinstance(state.view, SetupView):
            switcher.current = "setup"
            self.query_one("#ip-panel", Static).update(render.render_setup(state))
            self.query_one("#setup-error", Static).update(render.render_setup_error(state))
            field_id = FIELD_IDS[SETUP_FIELDS[state.view.focused_field]]
            self.query_one(f"#{field_id}", Input).focus()
        elif isinstance(state.view, RunningView):
            if switcher.current == "setup":
                self._leave_setup()
            switcher.current = "running"
            self.query_one("#running", Static).update(render.render_running(state))
        elif isinstance(state.view, DetailView):
            switcher.current = "detail"
            self.query_one("#detail", Static).update(render.render_detail(state))

    def _leave_setup(self) -> None:
        for field_id in FIELD_IDS.values():
            self.query_one(f"#{field_id}", Input).disabled = True
        self.set_focus(None)

    @on(Input.Submitted)
    def handle_setup_submit(self) -> None:
        self.apply_event(SetupConfirmed(
            port=self.query_one("#port-input", Input).value,
            subdomain=self.query_one("#subdomain-input", Input).value,
            timeout=self.query_one("#timeout-input", Input).value,
        ))

    # Actions

    def action_quit_app(self) -> None:
        self.apply_event(QuitRequested())

    def action_focus_move(self, step: int) -> None:
        self.apply_event(FocusMoved(step))

    def action_open_detail(self) -> None:
        self.apply_event(DetailOpened())

    def action_back(self) -> None:
        self.apply_event(DetailClosed())

    def action_down(self) -> None:
        if isinstance(self.state.view, DetailView):
            self.apply_event(DetailScrolled(lines=1))
        else:
            self.apply_event(SelectionMoved(1))

    def action_up(self) -> None:
        if isinstance(self.state.view, DetailView):
            self.apply_event(DetailScrolled(lines=-1))
        else:
            self.apply_event(SelectionMoved(-1))

    def action_page_next(self) -> None:
        self.apply_event(PageNext())

    def action_page_previous(self) -> None:
        self.apply_event(PagePrevious())

    def action_toggle_view(self) -> None:
        self.apply_event(ViewToggled())

    def action_reconnect(self) -> None:
        self.apply_event(ReconnectRequested())

    def action_reload(self) -> None:
        self.apply_event(ReloadRequested())

    def action_clear(self) -> None:
        self.apply_event(ClearRequested())

    def action_top(self) -> None:
        if isinstance(self.state.view, DetailView):
            self.apply_event(DetailJumped(to_end=False))
        else:
            self.apply_event(SelectionJumped(to_end=False))

    def action_bottom(self) -> None:
        if isinstance(self.state.view, DetailView):
            self.apply_event(DetailJumped(to_end=True))
        else:
            self.apply_event(SelectionJumped(to_end=True))

    def action_scroll_pages(self, pages: float) -> None:
        self.apply_event(DetailScrolled(pages=pages))
