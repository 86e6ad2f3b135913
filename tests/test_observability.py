import json
import logging

from observability.logging import ColoredFormatter, JSONFormatter, get_structured_logger, setup_logging
from observability.metrics import crawl_pages, get_metrics_text


def make_record(message='Crawl finished', **extra):
    record = logging.LogRecord('pipelines.crawler', logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_context():
    output = json.loads(JSONFormatter('citecrawl').format(make_record(ctx_seed='https://example.com')))

    assert output['message'] == 'Crawl finished'
    assert output['level'] == 'INFO'
    assert output['service'] == 'citecrawl'
    assert output['ctx_seed'] == 'https://example.com'


def test_colored_formatter_plain():
    output = ColoredFormatter(use_colors=False).format(make_record())
    assert '| INFO     | pipelines.crawler | Crawl finished' in output
    assert '\033[' not in output


def test_setup_logging_file_output(tmp_path):
    log_file = tmp_path / 'logs' / 'citecrawl.log'
    setup_logging(level='DEBUG', log_file=str(log_file), use_json=True)

    root = logging.getLogger()
    try:
        logging.getLogger('citecrawl.test').info('hello')
        for handler in root.handlers:
            handler.flush()

        assert json.loads(log_file.read_text().splitlines()[-1])['message'] == 'hello'
    finally:
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
        root.setLevel(logging.WARNING)


def test_structured_logger_binds_context(caplog):
    log = get_structured_logger('citecrawl.test', seed='https://example.com').bind(depth=2)

    with caplog.at_level(logging.INFO, logger='citecrawl.test'):
        log.info('visiting')

    record = caplog.records[-1]
    assert record.ctx_seed == 'https://example.com'
    assert record.ctx_depth == 2


def test_metrics_exposition():
    crawl_pages.labels(outcome='scraped').inc()
    text = get_metrics_text().decode()
    assert 'citecrawl_crawl_pages_total{outcome="scraped"}' in text
    assert 'citecrawl_search_duration_seconds' in text
