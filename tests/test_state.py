"""Tests for the coordinator reducer."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from webhook_tui.models import PageCursor
from webhook_tui.state import (
    VIEW_LIST,
    VIEW_TABLE,
    AppState,
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
    TunnelStatus,
    ViewToggled,
    WebhookReceived,
    initial_effects,
    initial_state,
    reduce,
)
from webhook_tui.tunnel import TunnelExpired, TunnelFailed, TunnelStarted

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def records(make_record):
    return tuple(make_record(i) for i in range(5, 0, -1))


@pytest.fixture
def running(records):
    """Running view with five records, the tunnel up as generation 1."""
    tunnel = TunnelStatus(url="https://abc.loca.lt", running=True, timeout=1800, started_at=NOW, generation=1)
    return AppState(
        view=RunningView(0),
        webhooks=records,
        cursor=PageCursor(current_page=0, total_count=5),
        tunnel=tunnel,
        server_running=True,
    )


def run(state, *events):
    effects = []
    for event in events:
        state, out = reduce(state, event)
        effects.extend(out)
    return state, effects


class TestSetup:
    def test_initial_state_and_effects(self):
        state = initial_state()
        assert isinstance(state.view, SetupView)
        assert state.fetching_ip
        assert initial_effects() == [FetchPublicIP(), LoadPage(0)]

    def test_focus_cycles(self):
        state, _ = run(AppState(), FocusMoved(1), FocusMoved(1), FocusMoved(1))
        assert state.view == SetupView(focused_field=0)
        state, _ = run(state, FocusMoved(-1))
        assert state.view == SetupView(focused_field=2)

    def test_confirm_with_defaults(self):
        state, effects = reduce(AppState(), SetupConfirmed(port="", subdomain="", timeout=""))

        assert state.view == RunningView(0)
        assert state.tunnel.starting
        assert state.tunnel.timeout == 1800
        assert state.requested_port == 8098
        assert effects == [
            StartTunnel(port=8098, subdomain="", timeout=1800),
            StartServer(port=8098),
            SaveSettings(port="", subdomain="", timeout_minutes=""),
        ]

    def test_confirm_with_values(self):
        state, effects = reduce(AppState(), SetupConfirmed(port=" 9000 ", subdomain=" hooks ", timeout="5"))
        assert effects[0] == StartTunnel(port=9000, subdomain="hooks", timeout=300)
        assert state.requested_subdomain == "hooks"

    @pytest.mark.parametrize("timeout", ["0", "-3", "abc", ""])
    def test_bad_timeout_falls_back_to_thirty_minutes(self, timeout):
        _, effects = reduce(AppState(), SetupConfirmed(port="8098", timeout=timeout))
        assert effects[0].timeout == 30 * 60

    @pytest.mark.parametrize("port", ["abc", "0", "70000"])
    def test_invalid_port_stays_in_setup(self, port):
        state, effects = reduce(AppState(), SetupConfirmed(port=port))
        assert isinstance(state.view, SetupView)
        assert "Invalid port" in state.setup_error
        assert effects == []

    def test_running_keys_ignored_in_setup(self):
        state = AppState()
        for event in (SelectionMoved(1), PageNext(), ReloadRequested(), ClearRequested(), ViewToggled()):
            assert reduce(state, event) == (state, [])


class TestSelection:
    def test_moves_and_clamps(self, running):
        state, _ = run(running, SelectionMoved(1), SelectionMoved(1))
        assert state.selected_index == 2
        state, _ = run(state, SelectionMoved(10))
        assert state.selected_index == 4
        state, _ = run(state, SelectionMoved(-10))
        assert state.selected_index == 0

    def test_jump(self, running):
        state, _ = reduce(running, SelectionJumped(to_end=True))
        assert state.selected_index == 4
        state, _ = reduce(state, SelectionJumped(to_end=False))
        assert state.selected_index == 0

    def test_empty_list_ignores_moves(self, running):
        empty = replace(running, webhooks=())
        assert reduce(empty, SelectionMoved(1))[0] is empty
        assert reduce(empty, DetailOpened())[0] is empty


class TestDetail:
    def test_open_and_close_keeps_selection(self, running, records):
        state, _ = run(running, SelectionMoved(2), DetailOpened())
        assert isinstance(state.view, DetailView)
        assert state.view.record is records[2]
        assert state.view.scroll_offset == 0
        assert state.view.lines

        state, _ = reduce(state, DetailClosed())
        assert state.view == RunningView(2)

    def test_scroll_clamps(self, running, make_record):
        big = make_record(9, body="\n".join(f"line {i}" for i in range(60)))
        state = replace(running, webhooks=(big,), viewport_height=10)
        state, _ = reduce(state, DetailOpened())
        max_offset = len(state.view.lines) - 10

        state, _ = reduce(state, DetailScrolled(lines=-5))
        assert state.view.scroll_offset == 0
        state, _ = reduce(state, DetailScrolled(pages=0.5))
        assert state.view.scroll_offset == 5
        state, _ = reduce(state, DetailScrolled(pages=1))
        assert state.view.scroll_offset == 15
        state, _ = reduce(state, DetailScrolled(lines=1000))
        assert state.view.scroll_offset == max_offset
        state, _ = reduce(state, DetailJumped(to_end=False))
        assert state.view.scroll_offset == 0
        state, _ = reduce(state, DetailJumped(to_end=True))
        assert state.view.scroll_offset == max_offset

    def test_short_content_does_not_scroll(self, running):
        state, _ = run(running, Resized(width=80, height=200), DetailOpened(), DetailScrolled(lines=3))
        assert state.view.scroll_offset == 0

    def test_reload_while_in_detail_keeps_selection(self, running, records):
        state, _ = run(running, SelectionMoved(3), DetailOpened())
        opened = state.view.record
        state, _ = reduce(state, PageLoaded(records=records, total_count=5, page=0))

        assert state.view.record is opened
        assert state.view.selected_index == 3
        state, _ = reduce(state, DetailClosed())
        assert state.view == RunningView(3)

    def test_close_detail_clamps_to_shorter_snapshot(self, running, records):
        state, _ = run(running, SelectionMoved(4), DetailOpened())
        state, _ = reduce(state, PageLoaded(records=records[:2], total_count=2, page=0))
        state, _ = reduce(state, DetailClosed())
        assert state.view == RunningView(1)

    def test_live_webhook_keeps_detail_record(self, running, make_record):
        state, _ = reduce(running, DetailOpened())
        opened = state.view.record
        state, _ = reduce(state, WebhookReceived(make_record(6)))
        assert state.view.record is opened
        assert state.webhooks[0].id == 6


class TestPaging:
    def _paged(self, running, total):
        return replace(running, cursor=PageCursor(current_page=0, total_count=total))

    def test_next_and_previous(self, running):
        state = self._paged(running, 45)
        state, effects = reduce(state, PageNext())
        assert state.cursor.current_page == 1
        assert effects == [LoadPage(1)]

        state, effects = reduce(state, PagePrevious())
        assert state.cursor.current_page == 0
        assert effects == [LoadPage(0)]

    def test_boundaries_are_no_ops(self, running):
        first = self._paged(running, 45)
        assert reduce(first, PagePrevious()) == (first, [])

        last = replace(first, cursor=PageCursor(current_page=2, total_count=45))
        assert reduce(last, PageNext()) == (last, [])

    def test_single_page(self, running):
        assert reduce(running, PageNext()) == (running, [])

    def test_page_loaded_replaces_snapshot(self, running, make_record):
        state, _ = reduce(running, SelectionMoved(3))
        fresh = tuple(make_record(i) for i in range(45, 25, -1))
        state, _ = reduce(state, PageLoaded(records=fresh, total_count=45, page=0))

        assert state.webhooks == fresh
        assert state.selected_index == 0
        assert state.cursor.total_pages == 3

    def test_page_loaded_clamps_page(self, running):
        state, _ = reduce(running, PageLoaded(records=(), total_count=10, page=4))
        assert state.cursor.current_page == 0

    def test_load_failure_keeps_snapshot(self, running):
        state, _ = reduce(running, PageLoadFailed("database is locked"))
        assert state.webhooks == running.webhooks
        assert state.store_error == "database is locked"


class TestRunningActions:
    def test_reload_resets_selection(self, running, records):
        state, _ = reduce(running, SelectionMoved(3))
        assert state.selected_index == 3
        state, effects = reduce(state, ReloadRequested())
        assert effects == [LoadPage(0)]
        state, _ = reduce(state, PageLoaded(records=records, total_count=5, page=0))
        assert state.selected_index == 0

    def test_clear_only_empties_view(self, running):
        state, effects = run(running, SelectionMoved(2), ClearRequested())
        assert state.webhooks == ()
        assert state.selected_index == 0
        assert state.cursor == running.cursor
        assert effects == []

    def test_toggle_view_mode(self, running):
        state, _ = reduce(running, ViewToggled())
        assert state.view_mode == VIEW_LIST
        state, _ = reduce(state, ViewToggled())
        assert state.view_mode == VIEW_TABLE

    def test_live_webhook_is_prepended_without_moving_cursor(self, running, make_record):
        state, _ = reduce(running, SelectionMoved(2))
        state, _ = reduce(state, WebhookReceived(make_record(6)))
        assert [r.id for r in state.webhooks] == [6, 5, 4, 3, 2, 1]
        assert state.selected_index == 2
        assert state.cursor == running.cursor


class TestTunnel:
    def test_started(self):
        state, _ = reduce(AppState(), SetupConfirmed())
        state, _ = reduce(state, TunnelStarted(url="https://x.loca.lt", generation=1, started_at=NOW))
        assert state.tunnel.running
        assert not state.tunnel.starting
        assert state.tunnel.url == "https://x.loca.lt"
        assert state.tunnel.remaining(NOW + timedelta(minutes=10)) == 20 * 60

    def test_failed(self):
        state, _ = reduce(AppState(), SetupConfirmed())
        state, _ = reduce(state, TunnelFailed("npx not found", generation=1))
        assert not state.tunnel.running
        assert state.tunnel.error == "npx not found"

    def test_expired(self, running):
        state, _ = reduce(running, TunnelExpired(generation=1))
        assert state.tunnel.expired
        assert not state.tunnel.running
        assert state.tunnel.url == "https://abc.loca.lt"

    def test_stale_expiry_is_ignored(self, running):
        newer = replace(running, tunnel=replace(running.tunnel, generation=2))
        assert reduce(newer, TunnelExpired(generation=1)) == (newer, [])

    def test_double_expiry_is_ignored(self, running):
        state, _ = reduce(running, TunnelExpired(generation=1))
        assert reduce(state, TunnelExpired(generation=1)) == (state, [])

    def test_reconnect_only_when_down(self, running):
        assert reduce(running, ReconnectRequested()) == (running, [])

        expired, _ = reduce(running, TunnelExpired(generation=1))
        state, effects = reduce(expired, ReconnectRequested())
        assert effects == [ReconnectTunnel()]
        assert state.tunnel.starting
        assert not state.tunnel.expired

        # A second press while the new tunnel is starting does nothing.
        assert reduce(state, ReconnectRequested()) == (state, [])

    def test_reconnect_after_failure(self, running):
        failed, _ = reduce(running, TunnelFailed("gone", generation=1))
        _, effects = reduce(failed, ReconnectRequested())
        assert effects == [ReconnectTunnel()]

    def test_remaining_never_negative(self):
        tunnel = TunnelStatus(running=True, timeout=60, started_at=NOW)
        assert tunnel.remaining(NOW + timedelta(hours=1)) == 0


class TestBackground:
    def test_public_ip(self):
        state, _ = reduce(AppState(), PublicIPFetched("203.0.113.7"))
        assert state.public_ip == "203.0.113.7"
        assert not state.fetching_ip

    def test_public_ip_failure(self):
        state, _ = reduce(AppState(), PublicIPFailed("timeout"))
        assert state.public_ip == "Unable to fetch"
        assert not state.fetching_ip

    def test_server_started_subscribes(self):
        state, effects = reduce(AppState(), ServerStarted(8098))
        assert state.server_running
        assert effects == [SubscribeFeed()]

    def test_server_failed(self):
        state, effects = reduce(AppState(), ServerFailed("Address already in use"))
        assert not state.server_running
        assert state.server_error == "Address already in use"
        assert effects == []


class TestQuit:
    @pytest.mark.parametrize("view", [SetupView(), RunningView(0)])
    def test_quit_from_any_view(self, view):
        state, effects = reduce(AppState(view=view), QuitRequested())
        assert state.quitting
        assert effects == [Shutdown()]

    def test_quit_once(self):
        state, _ = reduce(AppState(), QuitRequested())
        assert reduce(state, QuitRequested()) == (state, [])

    def test_unknown_event(self):
        state = AppState()
        assert reduce(state, object()) == (state, [])
