import pytest

from clients.payment_poller import DEFAULT_CONFIG, POLLING, STOPPED, SmartPaymentPoller


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeHandle:
    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    def __init__(self, clock):
        self.clock = clock
        self.handles = []

    def call_later(self, delay, fn):
        handle = FakeHandle(delay, fn)
        self.handles.append(handle)
        return handle

    @property
    def armed(self):
        return [h for h in self.handles if not h.cancelled and not getattr(h, "fired", False)]

    def fire_next(self):
        [handle] = self.armed
        handle.fired = True
        self.clock.now += handle.delay
        handle.fn()
        return handle.delay


class ScriptedCheck:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def created():
    return {"isPaid": False, "paymentStatus": 0, "errorCode": 0, "booking": {"status": "selected"}}


def processing():
    return {"isPaid": False, "paymentStatus": 1, "errorCode": 0, "booking": {"status": "selected"}}


def paid():
    return {"isPaid": True, "paymentStatus": 2, "errorCode": 0, "booking": {"status": "approved"}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


def make_poller(check, scheduler, clock, **kwargs):
    return SmartPaymentPoller(check, scheduler=scheduler, clock=clock, **kwargs)


def test_sequence_stops_after_paid(scheduler, clock):
    check = ScriptedCheck(created(), processing(), processing(), paid())
    successes = []
    poller = make_poller(check, scheduler, clock, on_success=successes.append)

    assert poller.start()
    delays = [scheduler.fire_next() for _ in range(4)]

    assert check.calls == 4
    assert delays == [5.0, 30.0, 15.0, 15.0]
    assert poller.state == STOPPED and poller.outcome == "paid"
    assert successes and successes[0]["isPaid"]
    assert scheduler.armed == []


def test_approved_booking_counts_as_success(scheduler, clock):
    check = ScriptedCheck({"isPaid": False, "paymentStatus": 0, "booking": {"status": "approved"}})
    poller = make_poller(check, scheduler, clock)
    poller.start()
    scheduler.fire_next()
    assert poller.outcome == "paid"


def test_negative_error_code_stops_with_error(scheduler, clock):
    check = ScriptedCheck({"isPaid": False, "paymentStatus": None, "errorCode": -9, "errorNote": "cancelled"})
    errors = []
    poller = make_poller(check, scheduler, clock, on_error=lambda msg, result: errors.append(msg))
    poller.start()
    scheduler.fire_next()

    assert poller.outcome == "error"
    assert errors == ["cancelled"]
    assert scheduler.armed == []


def test_transport_errors_back_off_then_give_up(scheduler, clock):
    check = ScriptedCheck(IOError("down"), IOError("down"), IOError("down"))
    errors = []
    poller = make_poller(check, scheduler, clock, on_error=lambda msg, result: errors.append(msg))
    poller.start()

    delays = [scheduler.fire_next() for _ in range(3)]
    assert delays == [5.0, 60.0, 90.0]
    assert poller.outcome == "error" and poller.errors == DEFAULT_CONFIG.max_errors
    assert len(errors) == 1


def test_success_resets_error_budget(scheduler, clock):
    check = ScriptedCheck(IOError("down"), IOError("down"), created(), IOError("down"), paid())
    poller = make_poller(check, scheduler, clock)
    poller.start()
    for _ in range(5):
        scheduler.fire_next()
    assert poller.outcome == "paid"


def test_stop_cancels_timer_and_no_tick_runs_afterwards(scheduler, clock):
    check = ScriptedCheck(created())
    poller = make_poller(check, scheduler, clock)
    poller.start()
    [handle] = scheduler.armed

    assert poller.stop()
    assert handle.cancelled
    handle.fn()  # a timer that fired anyway is ignored
    assert check.calls == 0
    assert scheduler.armed == []


def test_stop_during_check_discards_result(scheduler, clock):
    poller = None

    def check():
        poller.stop()
        return created()

    poller = make_poller(check, scheduler, clock)
    poller.start()
    scheduler.fire_next()
    assert poller.state == STOPPED and poller.outcome == "manual"
    assert scheduler.armed == []


def test_times_out_after_max_duration(scheduler, clock):
    responses = [created() for _ in range(50)]
    check = ScriptedCheck(*responses)
    errors = []
    poller = make_poller(check, scheduler, clock, on_error=lambda msg, result: errors.append(msg))
    poller.start()

    while scheduler.armed:
        scheduler.fire_next()

    assert poller.outcome == "timeout"
    assert errors == ["Payment verification timeout"]
    assert clock.now <= DEFAULT_CONFIG.max_duration


def test_start_is_idempotent_while_polling(scheduler, clock):
    poller = make_poller(ScriptedCheck(), scheduler, clock)
    assert poller.start()
    assert not poller.start()
    assert len(scheduler.armed) == 1
    assert poller.state == POLLING


def test_resume_only_for_open_bookings(scheduler, clock):
    poller = make_poller(ScriptedCheck({"booking": {"status": "approved"}}), scheduler, clock)
    assert not poller.resume()
    assert scheduler.armed == []

    poller = make_poller(ScriptedCheck({"booking": {"status": "selected"}}), scheduler, clock)
    assert poller.resume()
    assert poller.state == POLLING
