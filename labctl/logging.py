import logging
import logging.config

logconfig = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {"simple": {"format": "%(asctime)s - %(levelname)s - %(message)s"}},
    "handlers": {
        "stderr": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
            "stream": "ext://sys.stderr",
        }
    },
    "root": {"level": "WARNING", "handlers": ["stderr"]},
}


def setup_labctl_logger(verbose: bool = False) -> None:
    logging.config.dictConfig(config=logconfig)
    get_labctl_logger().setLevel(logging.DEBUG if verbose else logging.NOTSET)


def get_labctl_logger() -> logging.Logger:
    return logging.getLogger("labctl")
