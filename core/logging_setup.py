"""Root logging configuration for simulations and scripts."""
import logging

FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level="INFO"):
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric)
    if not any(getattr(h, "_floor_lending", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(FORMAT))
        handler._floor_lending = True
        root.addHandler(handler)

    # numpy/matplotlib font discovery is noisy at DEBUG
    logging.getLogger("matplotlib").setLevel(logging.WARNING)
