import logging
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


class LoggerFactory:
    @staticmethod
    def create(name: str = "cmscrape", level: int = logging.INFO, log_dir: str | None = "logs"):
        logger = logging.getLogger(name)
        if logger.handlers:
            return logger
        logger.setLevel(level)
        fmt = logging.Formatter(LOG_FORMAT)
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        logger.addHandler(stream)
        if log_dir:
            path = Path(log_dir)
            path.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(path / "scraper.log", encoding="utf-8")
            fh.setFormatter(fmt)
            logger.addHandler(fh)
        return logger
