import pytest


@pytest.mark.asyncio
async def test_with_retry_recovers_from_transient_error():
    from leadgen.retry import BackoffPolicy, RetryableError, with_retry

    calls = {"n": 0}

    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise RetryableError("try again")
        return "ok"

    out = await with_retry(flaky, policy=BackoffPolicy(max_attempts=3, base_delay_ms=0, max_delay_ms=0))
    assert out == "ok"
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_other_errors():
    from leadgen.retry import BackoffPolicy, with_retry

    calls = {"n": 0}

    async def broken():
        calls["n"] += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await with_retry(broken, policy=BackoffPolicy(max_attempts=5, base_delay_ms=0, max_delay_ms=0))
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_with_retry_reraises_after_last_attempt():
    from leadgen.retry import BackoffPolicy, RetryableError, with_retry

    async def always():
        raise RetryableError("down")

    with pytest.raises(RetryableError):
        await with_retry(always, policy=BackoffPolicy(max_attempts=2, base_delay_ms=0, max_delay_ms=0))


@pytest.mark.asyncio
async def test_with_fallback_value_and_callable():
    from leadgen.retry import with_fallback

    @with_fallback({"items": []})
    async def fails():
        raise RuntimeError("boom")

    first = await fails()
    first["items"].append(1)
    assert await fails() == {"items": []}

    @with_fallback(lambda x: x * 2)
    async def doubles_on_error(x):
        raise RuntimeError("boom")

    assert await doubles_on_error(4) == 8
