# tests/test_services.py
from immobot import crud
from immobot.services import CaptchaRelay


class Ticks:
    def __init__(self):
        self.now = 0.0

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def test_relay_returns_submitted_solution(session_factory):
    ticks = Ticks()
    relay = CaptchaRelay(session_factory, poll_seconds=3, sleep=ticks.sleep, clock=ticks.clock)
    relay.publish(True, "shot.png", "captcha")

    def sleep_then_solve(seconds):
        ticks.sleep(seconds)
        if ticks.now >= 9:
            with session_factory() as db:
                crud.submit_captcha_solution(db, "x7k")

    relay._sleep = sleep_then_solve
    assert relay.poll_solution(600) == "x7k"
    assert ticks.now == 9


def test_relay_times_out(session_factory):
    ticks = Ticks()
    relay = CaptchaRelay(session_factory, poll_seconds=3, sleep=ticks.sleep, clock=ticks.clock)
    relay.publish(True)
    assert relay.poll_solution(30) is None
    assert ticks.now == 30


def test_publish_inactive_clears_solution(session_factory):
    relay = CaptchaRelay(session_factory)
    relay.publish(True, "shot.png", "captcha")
    with session_factory() as db:
        crud.submit_captcha_solution(db, "abc")
    relay.publish(False)
    with session_factory() as db:
        state = crud.get_captcha_state(db)
        assert not state.active
        assert state.solution is None
