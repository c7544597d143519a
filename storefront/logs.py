import logging

from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    """Route all loggers through a single rich handler on the root logger."""
    root = logging.getLogger()
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(rich_tracebacks=True, show_path=False))
    root.setLevel(level.upper())
