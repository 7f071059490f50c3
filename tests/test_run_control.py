"""Tests for run control."""
from salesmail.jobs.run_control import RunControl


def test_no_stop_within_budget(clock):
    """Nothing stops while under budget."""
    control = RunControl(time_budget_minutes=1, check_interval=1, clock=clock)
    clock.advance(30)
    assert control.should_stop(0) == (False, None)


def test_stop_when_budget_reached(clock):
    """Reaching the budget exactly stops the run."""
    control = RunControl(time_budget_minutes=1, check_interval=1, clock=clock)
    clock.advance(60)
    should_stop, reason = control.should_stop(3)
    assert should_stop
    assert "1 minutes" in reason
    assert control.stop_reason == reason


def test_check_interval(clock):
    """The budget is only checked on multiples of the interval."""
    control = RunControl(time_budget_minutes=1, check_interval=5, clock=clock)
    clock.advance(120)
    assert control.should_stop(3) == (False, None)
    assert control.should_stop(5)[0] is True
    assert control.checks == 1


def test_zero_budget_stops_immediately(clock):
    """A zero budget stops before the first candidate."""
    control = RunControl(time_budget_minutes=0, check_interval=1, clock=clock)
    assert control.should_stop(0)[0] is True


def test_summary(clock):
    """Summary reports iterations and elapsed minutes."""
    control = RunControl(time_budget_minutes=5, check_interval=1, clock=clock)
    control.record_iteration()
    control.record_iteration()
    clock.advance(90)
    summary = control.get_summary()
    assert summary["iterations"] == 2
    assert summary["elapsed_minutes"] == 1.5
    assert summary["stop_reason"] is None
