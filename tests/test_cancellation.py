import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from cancellation import CancellationToken, run_cancellable
from exceptions import OperationCancelled
from language import get_language_name, is_chinese, normalize_chinese_punctuation


def test_run_cancellable_returns_result():
    async def work():
        await asyncio.sleep(0)
        return 42

    async def run():
        return await run_cancellable(work(), CancellationToken())

    assert asyncio.run(run()) == 42


def test_run_cancellable_stops_work_when_token_fires():
    finished = []

    async def slow():
        await asyncio.sleep(5)
        finished.append(True)

    async def run():
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel, "stop")
        await run_cancellable(slow(), token)

    with pytest.raises(OperationCancelled, match="stop"):
        asyncio.run(run())
    assert finished == []


def test_cancel_is_idempotent_and_keeps_first_reason():
    async def run():
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        return token

    token = asyncio.run(run())
    assert token.cancelled
    assert token.reason == "first"


def test_language_helpers():
    assert get_language_name("ZH") == "Simplified Chinese"
    assert get_language_name("xx") == "xx"
    assert is_chinese("zh-TW") and is_chinese("Chinese") and not is_chinese("ja")
    assert normalize_chinese_punctuation("好，的。吗？") == "好的吗？"
