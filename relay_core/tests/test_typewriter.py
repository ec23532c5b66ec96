import asyncio

from relay_core.stream.typewriter import Typewriter


def test_tick_emits_fixed_slices_in_order():
    async def run():
        out = []
        tw = Typewriter(out.append, slice_chars=4, interval=60)
        tw.push("abcdefghij")
        assert tw.running
        assert tw.tick() and tw.tick()
        assert out == ["abcd", "efgh"]
        assert tw.pending == "ij"
        assert tw.drain() == "ij"
        assert out == ["abcd", "efgh", "ij"]
        assert not tw.running
        assert tw.tick() is False

    asyncio.run(run())


def test_pushes_then_drain_emit_everything_once():
    async def run():
        out = []
        tw = Typewriter(out.append, slice_chars=3, interval=60)
        pushed = ["Hel", "lo, ", "", "wo", "rld and more text"]
        for i, piece in enumerate(pushed):
            tw.push(piece)
            if i % 2:
                tw.tick()
        tw.drain()
        return out, pushed

    out, pushed = asyncio.run(run())
    assert "".join(out) == "".join(pushed)


def test_timer_paces_output_and_stops_when_idle():
    async def run():
        out = []
        tw = Typewriter(out.append, slice_chars=2, interval=0.001)
        tw.push("abcdef")
        for _ in range(500):
            if not tw.running:
                break
            await asyncio.sleep(0.005)
        assert out == ["ab", "cd", "ef"]
        assert not tw.running
        tw.push("gh")
        assert tw.running
        tw.drain()
        assert out[-1] == "gh"

    asyncio.run(run())


def test_drain_mid_tick_flushes_remaining_chars():
    async def run():
        out = []
        tw = Typewriter(out.append, slice_chars=12, interval=60)
        tw.push("Hello world!abc")
        tw.tick()
        await asyncio.sleep(0.005)
        assert tw.pending == "abc"
        tw.drain()
        assert out == ["Hello world!", "abc"]

    asyncio.run(run())


def test_deferred_callback_waits_for_earlier_text():
    async def run():
        out = []
        tw = Typewriter(out.append, slice_chars=4, interval=60)
        tw.defer(lambda: out.append("<now>"))
        tw.push("abcdef")
        tw.defer(lambda: out.append("<mark>"))
        tw.push("gh")
        assert tw.tick()
        assert out == ["<now>", "abcd"]
        assert tw.tick()
        assert out == ["<now>", "abcd", "ef", "<mark>"]
        tw.drain()
        return out

    assert asyncio.run(run()) == ["<now>", "abcd", "ef", "<mark>", "gh"]


def test_drain_keeps_deferred_callbacks_in_order():
    async def run():
        out = []
        tw = Typewriter(out.append, slice_chars=4, interval=60)
        tw.push("abc")
        tw.defer(lambda: out.append("<1>"))
        tw.push("def")
        tw.defer(lambda: out.append("<2>"))
        assert tw.drain() == "abcdef"
        return out

    assert asyncio.run(run()) == ["abc", "<1>", "def", "<2>"]
