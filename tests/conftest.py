import pytest

from browserkit.channel import ChannelRegistry
from browserkit.session import BrowserSession


@pytest.fixture
def registry() -> ChannelRegistry:
    return ChannelRegistry()


@pytest.fixture
def session() -> BrowserSession:
    """A browser session with two UI roots, like a page with a sidebar."""
    return BrowserSession("session-1", roots=["main", "sidebar"])
