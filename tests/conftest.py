"""
Pytest configuration and fixtures

Check-in histories are written newest first, one record per day, using a
single letter per day:

    C completed, M missed, R recovered, N no trigger
"""
from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from models import CheckIn

# A Sunday
DEFAULT_END = date(2024, 1, 14)

STATE_FLAGS = {
    "C": {"triggerOccurred": True, "actionTaken": True},
    "M": {"triggerOccurred": True, "actionTaken": False},
    "R": {"triggerOccurred": True, "actionTaken": False, "recoveryCompleted": True},
    "N": {"triggerOccurred": False, "actionTaken": False},
}


def build_history(states, end=DEFAULT_END, **fields):
    check_ins = []
    for offset, state in enumerate(states):
        day = end - timedelta(days=offset)
        check_ins.append(CheckIn(date=day.isoformat(), **STATE_FLAGS[state], **fields))
    return check_ins


@pytest.fixture
def make_history():
    """Factory: make_history("CCM") -> [today completed, yesterday completed, day before missed]"""
    return build_history


class FakeCompletions:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    async def parse(self, **kwargs):
        self.calls.append(kwargs)
        return await self.handler(**kwargs)


def fake_openai_client(handler):
    """Stands in for AsyncOpenAI: only chat.completions.parse is used."""
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(handler)))


def parsed_completion(parsed):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(parsed=parsed))])


@pytest.fixture
def make_client():
    return fake_openai_client


@pytest.fixture
def completion():
    return parsed_completion
