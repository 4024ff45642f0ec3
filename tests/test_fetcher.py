"""
Unit tests for the page Fetcher.

Tests reference resolution, failure mapping, retries and Retry-After handling.
"""

from unittest.mock import Mock, patch

import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError

from conftest import make_page
from csfd_dist.fetcher import Fetcher


def response(status=200, text="", headers=None):
    return Mock(status_code=status, text=text, headers=headers or {})


@pytest.fixture
def fetcher():
    f = Fetcher("test-agent", timeout=5, retries=2, delay=0, contact_email="ops@example.com")
    yield f
    f.close()


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("csfd_dist.fetcher.time.sleep") as sleep:
        yield sleep


class TestSessionSetup:
    """Test identification headers."""

    def test_headers(self, fetcher):
        assert fetcher.session.headers["User-Agent"] == "test-agent"
        assert fetcher.session.headers["From"] == "ops@example.com"

    def test_proxy(self):
        f = Fetcher("ua", 5, 0, 0, proxy="http://proxy:3128")
        assert f.session.proxies["https"] == "http://proxy:3128"
        f.close()


class TestRetrieve:
    """Test the coroutine used by the aggregation engine."""

    @pytest.mark.asyncio
    async def test_resolves_relative_reference(self, fetcher):
        html = make_page([1, 0, 0, 0, 0, 0])
        with patch.object(fetcher.session, "get", return_value=response(text=html)) as get:
            assert await fetcher.retrieve("/film/1-x/hodnoceni/?page=2") == html
        get.assert_called_once_with("https://www.csfd.cz/film/1-x/hodnoceni/?page=2", timeout=5)

    @pytest.mark.asyncio
    async def test_absolute_reference(self, fetcher):
        with patch.object(fetcher.session, "get", return_value=response(text="ok")) as get:
            await fetcher.retrieve("https://www.csfd.cz/film/1-x/#top")
        get.assert_called_once_with("https://www.csfd.cz/film/1-x/", timeout=5)

    @pytest.mark.asyncio
    async def test_http_error_is_unavailable(self, fetcher):
        with patch.object(fetcher.session, "get", return_value=response(404, "gone")) as get:
            assert await fetcher.retrieve("/film/1-x/") is None
        assert get.call_count == 1

    @pytest.mark.asyncio
    async def test_network_error_retries_then_unavailable(self, fetcher):
        with patch.object(fetcher.session, "get", side_effect=RequestsConnectionError("down")) as get:
            assert await fetcher.retrieve("/film/1-x/") is None
        assert get.call_count == 3

    @pytest.mark.asyncio
    async def test_recovers_on_retry(self, fetcher):
        side = [RequestsConnectionError("blip"), response(text="fine")]
        with patch.object(fetcher.session, "get", side_effect=side):
            assert await fetcher.retrieve("/film/1-x/") == "fine"

    @pytest.mark.asyncio
    async def test_honors_retry_after(self, fetcher, no_sleep):
        side = [response(429, headers={"Retry-After": "3"}), response(text="fine")]
        with patch.object(fetcher.session, "get", side_effect=side):
            assert await fetcher.retrieve("/film/1-x/") == "fine"
        assert any(c.args == (3,) for c in no_sleep.call_args_list)

    @pytest.mark.asyncio
    async def test_captcha_is_unavailable(self, fetcher):
        page = '<html><div class="g-recaptcha"></div></html>'
        with patch.object(fetcher.session, "get", return_value=response(text=page)):
            assert await fetcher.retrieve("/film/1-x/") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ref", ["", "javascript:void(0)", "mailto:a@b.cz"])
    async def test_unusable_reference(self, fetcher, ref):
        with patch.object(fetcher.session, "get") as get:
            assert await fetcher.retrieve(ref) is None
        get.assert_not_called()


class TestRetryAfter:
    """Test Retry-After parsing."""

    @pytest.mark.parametrize("value,expected", [("", 0), ("12", 12), ("soon", 0),
                                                ("Wed, 21 Oct 2015 07:28:00 GMT", 0)])
    def test_parse(self, fetcher, value, expected):
        assert fetcher._parse_retry_after(value) == expected
