import json

import pytest

from conftest import FakeTextService
from config.settings import ExtractionSettings
from pipelines.extractor import (
    TRUNCATION_MARKER,
    ContentExtractor,
    ExtractionError,
    strip_boilerplate,
    truncate_html,
)
from services.llm import TextServiceError

URL = 'https://example.com/benefits/medical'
LONG_CONTENT = 'Medical plans cover preventive care at no cost. ' * 5


def reply(title='Medical Benefits', content=LONG_CONTENT):
    return json.dumps({'title': title, 'content': content})


class TestHtmlPreparation:
    def test_strip_boilerplate(self):
        html = """
        <html><head><style>body {}</style><script>track()</script></head>
        <body><header>Logo</header><nav>Menu</nav>
        <!-- hidden note -->
        <main><h1>Medical</h1><p>Plan details</p></main>
        <footer>Copyright</footer></body></html>
        """
        cleaned = strip_boilerplate(html)

        assert 'Plan details' in cleaned
        assert '<h1>Medical</h1>' in cleaned
        for removed in ('track()', 'Logo', 'Menu', 'Copyright', 'hidden note', 'body {}'):
            assert removed not in cleaned

    def test_truncate_html(self):
        assert truncate_html('abc', 10) == 'abc'
        truncated = truncate_html('x' * 50, 20)
        assert truncated == 'x' * 20 + TRUNCATION_MARKER


class TestContentExtractor:
    @pytest.fixture
    def settings(self):
        return ExtractionSettings(max_html_chars=200)

    @pytest.mark.asyncio
    async def test_extracts_title_and_content(self, settings):
        service = FakeTextService([reply()])
        extractor = ContentExtractor(service, settings)

        extracted = await extractor.extract('<main><p>Plan</p></main>', URL)

        assert extracted.title == 'Medical Benefits'
        assert extracted.content == LONG_CONTENT.strip()
        call = service.calls[0]
        assert call['json_response'] is True
        assert call['model'] == settings.model
        assert 'employee benefits' in call['system_instruction']

    @pytest.mark.asyncio
    async def test_html_truncated_before_sending(self, settings):
        service = FakeTextService([reply()])
        extractor = ContentExtractor(service, settings)

        await extractor.extract('<p>' + 'y' * 1000 + '</p>', URL)

        assert TRUNCATION_MARKER in service.calls[0]['content']
        assert 'y' * 1000 not in service.calls[0]['content']

    @pytest.mark.asyncio
    async def test_title_falls_back(self, settings):
        extractor = ContentExtractor(FakeTextService([reply(title='')]), settings)
        extracted = await extractor.extract('<p>x</p>', URL, fallback_title='Rendered Title')
        assert extracted.title == 'Rendered Title'

        extractor = ContentExtractor(FakeTextService([reply(title=None)]), settings)
        extracted = await extractor.extract('<p>x</p>', URL)
        assert extracted.title == settings.default_title

    @pytest.mark.asyncio
    async def test_short_content_rejected(self, settings):
        extractor = ContentExtractor(FakeTextService([reply(content='Too short')]), settings)
        with pytest.raises(ExtractionError, match='Insufficient content'):
            await extractor.extract('<p>x</p>', URL)

    @pytest.mark.asyncio
    @pytest.mark.parametrize('raw', ['not json', '[1, 2]', '{"content": 42}', ''])
    async def test_malformed_response_rejected(self, settings, raw):
        extractor = ContentExtractor(FakeTextService([raw]), settings)
        with pytest.raises(ExtractionError):
            await extractor.extract('<p>x</p>', URL)

    @pytest.mark.asyncio
    async def test_service_error_propagates(self, settings):
        extractor = ContentExtractor(FakeTextService([TextServiceError('unavailable')]), settings)
        with pytest.raises(TextServiceError):
            await extractor.extract('<p>x</p>', URL)
