"""Tests for the Controller lifecycle state machine."""

import time
from unittest.mock import patch

import pytest

from fakes import RecordingClient, invalid_config, make_config, widget_config
from steelclock.core.config import DisplayConfig
from steelclock.core.controller import Controller, ControllerState, ReloadResult, backoff_delay
from steelclock.core.errors import ConfigError, GatewayError, SteelClockError
from steelclock.core.gateway import GameSenseClient
from steelclock.widgets.registry import create_widgets


class Harness:
    """A controller wired to recording clients and a swappable config."""

    def __init__(self, config, **client_kwargs):
        self.config = config
        self.clients = []
        self.client_kwargs = client_kwargs
        self.fail_widgets = False
        self.controller = Controller(
            lambda: self.config,
            client_factory=self.make_client,
            widget_factory=self.make_widgets,
            settle_seconds=0,
            bind_base_delay=0.01,
            heartbeat_interval=60.0,
        )

    def make_client(self, config):
        client = RecordingClient(game_name=config.game_name, **self.client_kwargs)
        self.clients.append(client)
        return client

    def make_widgets(self, configs):
        if self.fail_widgets:
            raise ConfigError("widget factory disabled")
        return create_widgets(configs)

    def total(self, name):
        return sum(c.count(name) for c in self.clients)


def two_widget_config(**kwargs):
    return make_config(
        [
            widget_config(widget_id="left", w=64, value=255),
            widget_config("test-counter", widget_id="right", x=64, w=64),
        ],
        **kwargs,
    )


@pytest.fixture
def harness():
    h = Harness(make_config())
    yield h
    h.controller.stop()


class TestStart:
    def test_start_registers_and_binds(self, harness):
        harness.controller.start()
        assert harness.controller.state == ControllerState.RUNNING

        client = harness.clients[0]
        assert client.args_of("register_game") == [("SteelClock", 0)]
        assert client.args_of("bind_screen_event") == [("STEELCLOCK_DISPLAY", "screened-128x40")]

        time.sleep(0.2)
        assert client.count("send_screen_data") == 1

    def test_start_twice_rejected(self, harness):
        harness.controller.start()
        with pytest.raises(SteelClockError):
            harness.controller.start()
        assert harness.controller.state == ControllerState.RUNNING

    def test_invalid_config_is_fatal(self):
        h = Harness(invalid_config(widgets=[]))
        with pytest.raises(ConfigError):
            h.controller.start()
        assert h.controller.state == ControllerState.FATAL_STOPPED
        assert h.clients == []

    def test_register_failure_is_fatal(self):
        h = Harness(make_config(), fail_register=True)
        with pytest.raises(GatewayError):
            h.controller.start()
        assert h.controller.state == ControllerState.FATAL_STOPPED
        assert h.clients[0].closed
        assert h.controller.client is None

    def test_bind_retries_with_backoff(self):
        h = Harness(make_config(), fail_binds=2)
        h.controller.start()
        try:
            client = h.clients[0]
            assert client.count("bind_failed") == 2
            assert client.count("bind_screen_event") == 1
        finally:
            h.controller.stop()

    def test_bind_gives_up_after_attempts(self):
        h = Harness(make_config(), fail_binds=10)
        with pytest.raises(GatewayError):
            h.controller.start()
        assert h.clients[0].count("bind_failed") == h.controller.bind_attempts
        assert h.controller.state == ControllerState.FATAL_STOPPED

    def test_restart_after_fatal(self):
        h = Harness(invalid_config(widgets=[]))
        with pytest.raises(ConfigError):
            h.controller.start()
        h.config = make_config()
        h.controller.start()
        try:
            assert h.controller.state == ControllerState.RUNNING
        finally:
            h.controller.stop()


class TestReload:
    def test_reload_keeps_registration(self, harness):
        harness.controller.start()
        time.sleep(0.3)
        first_compositor = harness.controller.compositor

        harness.config = two_widget_config()
        assert harness.controller.reload() == ReloadResult.RELOADED
        assert harness.controller.compositor is not first_compositor
        assert [w.name() for w in harness.controller.widgets] == ["left", "right"]

        before = harness.total("send_screen_data")
        time.sleep(0.3)
        assert harness.total("send_screen_data") > before

        harness.controller.stop()
        assert len(harness.clients) == 1
        assert harness.total("register_game") == 1
        assert harness.total("bind_screen_event") == 1
        assert harness.total("remove_game") == 0

    def test_reload_rebinds_on_event_change(self, harness):
        harness.controller.start()
        harness.config = make_config(event_name="OTHER_EVENT")
        harness.controller.reload()

        client = harness.clients[0]
        assert [a[0] for a in client.args_of("bind_screen_event")] == [
            "STEELCLOCK_DISPLAY",
            "OTHER_EVENT",
        ]
        assert client.count("register_game") == 1

    def test_reload_rebinds_on_resolution_change(self, harness):
        harness.controller.start()
        harness.config = make_config(device_type="screened-128x52")
        harness.controller.reload()
        assert harness.clients[0].count("bind_screen_event") == 2

    def test_reload_recreates_client_on_game_change(self, harness):
        harness.controller.start()
        harness.config = make_config(game_name="OTHER", game_display_name="Other")
        harness.controller.reload()

        assert len(harness.clients) == 2
        assert harness.clients[0].closed
        assert harness.clients[1].game_name == "OTHER"
        assert harness.clients[1].count("register_game") == 1
        assert harness.controller.client is harness.clients[1]

    def test_invalid_reload_keeps_session(self, harness):
        harness.controller.start()
        compositor = harness.controller.compositor
        harness.config = invalid_config(game_display_name="STEELCLOCK")

        with pytest.raises(ConfigError):
            harness.controller.reload()

        assert harness.controller.state == ControllerState.RUNNING
        assert harness.controller.compositor is compositor
        assert compositor.is_running
        assert harness.total("register_game") == 1

    def test_invalid_reload_stream_continues(self):
        h = Harness(make_config([widget_config("test-counter")]))
        h.controller.start()
        try:
            time.sleep(0.2)
            h.config = invalid_config(refresh_rate_ms=0)
            with pytest.raises(ConfigError):
                h.controller.reload()
            before = h.total("send_screen_data")
            time.sleep(0.2)
            assert h.total("send_screen_data") > before
        finally:
            h.controller.stop()

    def test_failed_session_reverts_to_last_good(self, harness):
        harness.controller.start()
        good = harness.controller.active_config

        # Valid shape, but no widget can be built from it
        harness.config = make_config([widget_config("test-broken")])
        assert harness.controller.reload() == ReloadResult.REVERTED

        assert harness.controller.state == ControllerState.RUNNING
        assert harness.controller.active_config is good
        assert harness.controller.last_good_config is good
        assert harness.controller.compositor.is_running
        assert isinstance(harness.controller.last_error, ConfigError)

    def test_failed_recovery_is_fatal(self, harness):
        harness.controller.start()
        harness.fail_widgets = True
        harness.config = two_widget_config()

        with pytest.raises(ConfigError):
            harness.controller.reload()
        assert harness.controller.state == ControllerState.FATAL_STOPPED
        assert harness.controller.compositor is None
        assert harness.clients[0].closed

    def test_reload_with_explicit_config(self, harness):
        harness.controller.start()
        config = two_widget_config()
        assert harness.controller.reload(config) == ReloadResult.RELOADED
        assert harness.controller.active_config is config

    def test_reload_requires_running(self, harness):
        with pytest.raises(SteelClockError):
            harness.controller.reload()
        assert harness.controller.state == ControllerState.STOPPED


class TestStop:
    def test_stop_keeps_registration_by_default(self, harness):
        harness.controller.start()
        harness.controller.stop()
        assert harness.controller.state == ControllerState.STOPPED
        assert harness.total("remove_game") == 0
        assert harness.clients[0].closed

    def test_stop_unregisters_when_configured(self):
        h = Harness(make_config(unregister_on_exit=True))
        h.controller.start()
        h.controller.stop()
        assert h.total("remove_game") == 1

    def test_no_sends_after_stop(self):
        h = Harness(make_config([widget_config("test-counter")]))
        h.controller.start()
        time.sleep(0.15)
        h.controller.stop()
        count = h.total("send_screen_data")
        time.sleep(0.2)
        assert h.total("send_screen_data") == count

    def test_stop_when_stopped_is_noop(self, harness):
        harness.controller.stop()
        assert harness.controller.state == ControllerState.STOPPED

    def test_frame_listener_survives_reload(self, harness):
        seen = []
        harness.controller.add_frame_listener(seen.append)
        harness.controller.start()
        time.sleep(0.15)
        harness.controller.reload(make_config([widget_config("test-counter")]))
        time.sleep(0.15)
        assert len(seen) >= 2


class TestBackoff:
    def test_backoff_delay(self):
        assert backoff_delay(1, 1.0, 10.0) == 0.0
        assert backoff_delay(2, 1.0, 10.0) == 1.0
        assert backoff_delay(3, 1.0, 10.0) == 2.0
        assert backoff_delay(4, 1.0, 10.0) == 4.0
        assert backoff_delay(10, 1.0, 10.0) == 10.0


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


class TestDisplayChange:
    def make_client(self, config):
        client = GameSenseClient(
            config.game_name,
            config.game_display_name,
            base_url="http://127.0.0.1:1",
            width=config.display.width,
            height=config.display.height,
        )
        self.clients.append(client)
        return client

    def test_reload_with_new_display_size_uses_matching_client(self):
        self.clients = []
        with patch.object(GameSenseClient, "_post") as post:
            controller = Controller(
                lambda: make_config(backend="gamesense"),
                client_factory=self.make_client,
                settle_seconds=0,
                heartbeat_interval=60.0,
            )
            controller.start()
            try:
                config = make_config(
                    [widget_config(h=48)], backend="gamesense", display=DisplayConfig(height=48)
                )
                assert controller.reload(config) == ReloadResult.RELOADED
                assert wait_for(
                    lambda: any(
                        "image-data-128x48" in call.args[1]["data"]["frame"]
                        for call in post.call_args_list
                        if call.args[0] == "/game_event"
                    )
                )
            finally:
                controller.stop()

        assert len(self.clients) == 2
        assert self.clients[1].frame_size == 768

        binds = [call.args[1] for call in post.call_args_list if call.args[0] == "/bind_game_event"]
        assert binds[-1]["handlers"][0]["device-type"] == "screened-128x48"
        assert len(binds[-1]["handlers"][0]["datas"][0]["image-data"]) == 768

        sizes = [
            len(frame)
            for call in post.call_args_list
            if call.args[0] == "/game_event"
            for key, frame in call.args[1]["data"]["frame"].items()
            if key == "image-data-128x48"
        ]
        assert sizes and set(sizes) == {768}


class TestFailover:
    def test_switches_to_failover_backend(self):
        clients = {}

        def factory(config):
            failing = 1000 if config.backend == "gamesense" else 0
            clients[config.backend] = RecordingClient(fail_sends=failing)
            return clients[config.backend]

        controller = Controller(
            lambda: make_config(backend="gamesense", failover_backend="preview"),
            client_factory=factory,
            settle_seconds=0,
            heartbeat_interval=60.0,
            max_send_failures=3,
        )

        def on_preview():
            config = controller.active_config
            return config is not None and config.backend == "preview"

        controller.start()
        try:
            assert wait_for(on_preview)
            assert wait_for(lambda: clients["preview"].count("send_screen_data") >= 1)
            assert controller.state == ControllerState.RUNNING
            assert controller.client is clients["preview"]
        finally:
            controller.stop()

        assert clients["gamesense"].count("send_failed") >= 3
        assert clients["gamesense"].closed
        assert controller.last_good_config.backend == "gamesense"

    def test_no_failover_without_backend(self):
        client = RecordingClient(fail_sends=1000)
        controller = Controller(
            lambda: make_config(backend="gamesense"),
            client_factory=lambda cfg: client,
            settle_seconds=0,
            heartbeat_interval=60.0,
            max_send_failures=2,
        )
        controller.start()
        try:
            time.sleep(0.3)
            assert controller.client is client
            assert controller.compositor.on_failure is None
            assert controller.fail_over() is False
        finally:
            controller.stop()

    def test_stale_compositor_is_ignored(self, harness):
        harness.config = make_config(backend="gamesense", failover_backend="preview")
        harness.controller.start()
        old = harness.controller.compositor
        harness.controller.reload(make_config(backend="gamesense", failover_backend="preview"))

        assert harness.controller.fail_over(old) is False
        assert harness.controller.active_config.backend == "gamesense"
