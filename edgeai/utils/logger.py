import datetime
import logging
import os
import sys

import termcolor
from pathlib import Path

__appname__ = "edgeai"


def resolve_path(path: Path | str) -> Path:
    return Path(path).expanduser().resolve()


# EDGEAI_LOG_DIR overrides the default ~/edgeai_logs location
logs_dir_path = Path(
    os.environ.get("EDGEAI_LOG_DIR") or Path.home() / f"{__appname__}_logs"
)
resolved_logs_dir_path = resolve_path(logs_dir_path)

current_date = datetime.datetime.now().strftime("%Y-%m-%d")
log_file_name = f"{__appname__}_{current_date}.log"
resolved_log_file_path = resolve_path(resolved_logs_dir_path / log_file_name)

if os.name == "nt":  # Windows
    import colorama
    colorama.init()


COLORS = {
    "WARNING": "yellow",
    "INFO": "white",
    "DEBUG": "blue",
    "CRITICAL": "red",
    "ERROR": "red",
}


class ColoredFormatter(logging.Formatter):
    def __init__(self, fmt, use_color=True):
        logging.Formatter.__init__(self, fmt)
        self.use_color = use_color

    def format(self, record):
        levelname = record.levelname
        if self.use_color and levelname in COLORS:

            def colored(text):
                return termcolor.colored(
                    text,
                    color=COLORS[levelname],
                    attrs={"bold": True},
                )

            record.levelname2 = colored("{:<7}".format(record.levelname))
            record.message2 = colored(record.getMessage())

            asctime2 = datetime.datetime.fromtimestamp(record.created)
            record.asctime2 = termcolor.colored(asctime2, color="green")

            record.module2 = termcolor.colored(record.module, color="cyan")
            record.funcName2 = termcolor.colored(record.funcName, color="cyan")
            record.lineno2 = termcolor.colored(record.lineno, color="cyan")
        else:
            record.levelname2 = record.levelname
            record.message2 = record.getMessage()
            record.module2 = record.module
            record.funcName2 = record.funcName
            record.lineno2 = record.lineno
        return logging.Formatter.format(self, record)


logger = logging.getLogger(__appname__)
logger.setLevel(logging.INFO)

stream_handler = logging.StreamHandler(sys.stderr)
handler_format = ColoredFormatter(
    "%(asctime)s [%(levelname2)s] %(module2)s:%(funcName2)s:%(lineno2)s"
    "- %(message2)s"
)
stream_handler.setFormatter(handler_format)
logger.addHandler(stream_handler)


def _add_file_handler(log_file: Path) -> None:
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
    except OSError as exc:
        logger.warning("File logging disabled, cannot write %s: %s", log_file, exc)
        return
    file_format = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(module)s:%(funcName)s:%(lineno)d - %(message)s"
    )
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)


_add_file_handler(resolved_log_file_path)
