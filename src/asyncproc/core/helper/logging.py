import logging
import time


ROOT_LOGGER = "asyncproc"


class CustomFormatter(logging.Formatter):
    """Форматтер с UTC временем, миллисекундами и lowercase уровня"""

    converter = time.gmtime  # всегда UTC

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    COLORS = {
        logging.DEBUG: "\033[37m",  # серый
        logging.INFO: "\033[36m",  # голубой
        logging.WARNING: "\033[33m",  # жёлтый
        logging.ERROR: "\033[31m",  # красный
        logging.CRITICAL: "\033[41m",  # белый текст на красном фоне
    }
    STYLE = {
        logging.DEBUG: DIM,
        logging.INFO: RESET,
        logging.WARNING: RESET,
        logging.ERROR: BOLD,
        logging.CRITICAL: BOLD,
    }

    def __init__(self, *args, colored: bool = True, **kwargs):
        super().__init__(*args, **kwargs)
        self.colored = colored

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname.lower()
        repeat = " " * (8 - len(level))

        if self.colored:
            color = self.COLORS.get(record.levelno, self.RESET)
            style = self.STYLE.get(record.levelno, self.RESET)
            level = f"{style}{color}{level}{self.RESET}"

        # levelname подменяем только на время форматирования,
        # запись могут обработать и другие хэндлеры
        original = record.levelname
        record.levelname = f"{repeat}{level}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class LoggingHelper:
    @staticmethod
    def _get_formatter(colored: bool = True):
        return CustomFormatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s: [%(process)d %(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            colored=colored,
        )

    @staticmethod
    def basicConfig(level: str = "info", colored: bool = True):
        numeric_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

        logging.basicConfig(level=numeric_level, encoding="utf-8", errors="ignore")

        for handler in logging.getLogger().handlers:
            handler.setFormatter(LoggingHelper._get_formatter(colored))

    @staticmethod
    def getLogger(name: str) -> logging.Logger:
        """Логгер в пространстве имён пакета: launcher -> asyncproc.launcher"""
        if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
            return logging.getLogger(name)

        return logging.getLogger(f"{ROOT_LOGGER}.{name}")
