import warnings

import pytest

from marketplace.utils.retry import RetryPolicy


def test_policy_retries_then_reraises():
    calls = []
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        policy = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0, jitter=0)

        @policy.decorator(ConnectionError)
        def flaky():
            calls.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            flaky()

    assert len(calls) == 3


def test_other_errors_are_not_retried():
    calls = []

    @RetryPolicy(max_attempts=3, base_delay=0, max_delay=0, jitter=0).decorator(ConnectionError)
    def broken():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        broken()

    assert calls == [1]
