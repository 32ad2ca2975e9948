import logging

from labctl.logging import get_labctl_logger, setup_labctl_logger


def test_setup_labctl_logger__verbose():
    setup_labctl_logger(verbose=True)

    assert get_labctl_logger().getEffectiveLevel() == logging.DEBUG


def test_setup_labctl_logger__quiet_after_verbose():
    setup_labctl_logger(verbose=True)
    setup_labctl_logger()

    assert get_labctl_logger().getEffectiveLevel() == logging.WARNING
