"""
Unit tests for logging configuration.
"""
import logging

from core.logger import CardNumberFilter, setup_logger


def make_record(msg, *args):
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


def test_card_numbers_are_masked():
    record = make_record("charged card %s", "4111 1111 1111 1111")
    assert CardNumberFilter().filter(record)
    assert record.getMessage() == "charged card ****1111"


def test_short_numbers_untouched():
    record = make_record("card ending 4242, amount 82.10")
    CardNumberFilter().filter(record)
    assert record.getMessage() == "card ending 4242, amount 82.10"


def test_setup_logger_no_duplicate_handlers():
    logger = setup_logger("tests.logger.dup")
    setup_logger("tests.logger.dup")
    assert len(logger.handlers) == 1


def test_invalid_level_falls_back_to_info():
    logger = setup_logger("tests.logger.level", level="LOUD")
    assert logger.level == logging.INFO
