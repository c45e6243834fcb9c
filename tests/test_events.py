import pytest

from smartsafe.services.events import EventEmitter


@pytest.mark.asyncio
async def test_failing_job_is_logged_and_later_jobs_still_run(dispatcher, caplog):
    ran = []

    async def broken():
        raise RuntimeError("boom")

    async def ok():
        ran.append("ok")

    assert dispatcher.submit("first", broken)
    assert dispatcher.submit("second", ok)
    await dispatcher.join()

    assert ran == ["ok"]
    assert dispatcher.running
    assert "Background job first failed" in caplog.text


@pytest.mark.asyncio
async def test_failed_event_write_is_dropped(store, dispatcher, caplog, monkeypatch):
    emitter = EventEmitter(store, dispatcher)
    real_append = store.append_event
    calls = []

    async def flaky(type, **kwargs):
        calls.append(type)
        if type == "lock":
            raise RuntimeError("database is locked")
        return await real_append(type, **kwargs)

    monkeypatch.setattr(store, "append_event", flaky)
    emitter.emit("lock", user_id="alice")
    emitter.emit("unlock", user_id="alice")
    await dispatcher.join()

    # no retry, order kept
    assert calls == ["lock", "unlock"]
    assert [e.type for e in await store.list_events()] == ["unlock"]
    assert "Background job event:lock failed" in caplog.text
