"""Tests for the application factory"""
import gc
import weakref

import xbuddy
from xbuddy import create_app


def _config(mailer):
    return {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "MAIL_TRANSPORT": mailer,
        "CONFIGURE_LOGGING": False,
    }


def test_create_app_does_not_register_exit_hooks(monkeypatch, mailer):
    registered = []
    monkeypatch.setattr(xbuddy.atexit, "register", lambda *a, **kw: registered.append(a))

    create_app(_config(mailer))
    create_app(_config(mailer))

    assert registered == []


def test_dispatcher_is_released_with_its_app(mailer):
    app = create_app(_config(mailer))
    ref = weakref.ref(app.extensions["notifications"])
    assert ref() in set(xbuddy._dispatchers)

    app.extensions.pop("notifications")
    gc.collect()

    assert ref() is None


def test_exit_hook_stops_live_dispatchers(mailer):
    app = create_app(_config(mailer))
    dispatcher = app.extensions["notifications"]
    dispatcher.start()
    assert dispatcher.running

    xbuddy._shutdown_dispatchers()

    assert not dispatcher.running
