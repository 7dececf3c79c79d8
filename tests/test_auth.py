"""Tests for auth session notifications."""

from __future__ import annotations

from smart_receipts.auth import AuthSession, AuthStateNotifier


def test_listeners_receive_events_until_unsubscribed():
    notifier = AuthStateNotifier()
    events = []
    unsubscribe = notifier.subscribe(lambda event, session: events.append((event, session)))
    session = AuthSession(user_id="user-1")

    notifier.publish("SIGNED_IN", session)
    unsubscribe()
    unsubscribe()
    notifier.publish("SIGNED_OUT", session)

    assert events == [("SIGNED_IN", session)]
    assert notifier.listener_count == 0


def test_sign_out_clears_session():
    notifier = AuthStateNotifier()
    seen = []
    notifier.subscribe(lambda event, session: seen.append(session))

    notifier.publish("SIGNED_IN", AuthSession(user_id="user-1"))
    notifier.publish("SIGNED_OUT", AuthSession(user_id="user-1"))

    assert notifier.session is None
    assert seen[-1] is None


def test_failing_listener_does_not_block_others():
    notifier = AuthStateNotifier()
    received = []

    def broken(event, session):
        raise RuntimeError("boom")

    notifier.subscribe(broken)
    notifier.subscribe(lambda event, session: received.append(event))

    notifier.publish("TOKEN_REFRESHED", AuthSession(user_id="user-1", access_token="t"))

    assert received == ["TOKEN_REFRESHED"]
    assert notifier.session.access_token == "t"
