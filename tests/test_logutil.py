import io
import logging
import uuid

from builderkit.logutil import LevelFormatter, MessageFilter, pause


def _logger():
    logger = logging.getLogger(f"builderkit-test-{uuid.uuid4().hex}")
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(LevelFormatter())
    logger.addHandler(handler)
    return logger, handler, stream


def _record(level, msg, *args):
    return logging.LogRecord("n", level, __file__, 1, msg, args, None)


def test_level_formatter():
    assert LevelFormatter().format(_record(logging.WARNING, "disk %s", "full")) == "WARNING: disk full"


def test_level_formatter_through_handler():
    logger, _, stream = _logger()
    logger.error("failed")
    assert stream.getvalue() == "ERROR: failed\n"


def test_message_filter_only_at_listed_levels():
    flt = MessageFilter([logging.WARNING], "noisy", "chatty")
    assert flt.filter(_record(logging.WARNING, "a noisy line")) is False
    assert flt.filter(_record(logging.WARNING, "useful line")) is True
    assert flt.filter(_record(logging.ERROR, "a noisy line")) is True


def test_message_filter_on_handler():
    logger, handler, stream = _logger()
    handler.addFilter(MessageFilter([logging.INFO], "skip"))
    logger.info("please skip me")
    logger.info("keep me")
    assert "skip" not in stream.getvalue()
    assert "keep me" in stream.getvalue()


def test_pause_holds_output_until_resume():
    logger, handler, stream = _logger()
    resume = pause(logger)
    logger.warning("held")
    assert stream.getvalue() == ""
    resume()
    assert "held" in stream.getvalue()
    assert handler.stream is stream
    logger.warning("direct")
    assert stream.getvalue().index("held") < stream.getvalue().index("direct")


def test_resume_twice_writes_once():
    logger, _, stream = _logger()
    resume = pause(logger)
    logger.info("once")
    resume()
    resume()
    assert stream.getvalue().count("once") == 1