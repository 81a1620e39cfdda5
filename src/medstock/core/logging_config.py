"""Logging configuration for MedStock."""

import logging

from rich.logging import RichHandler


def setup_logging(verbose: bool = False) -> None:
    """Configure application logging levels.

    Args:
        verbose: If True, show detailed logs including timestamps and paths.
                 If False, only show essential MedStock logs and suppress third-party noise.
    """
    # Root logger - suppress everything by default
    logging.getLogger().setLevel(logging.WARNING)

    medstock_level = logging.DEBUG if verbose else logging.INFO
    medstock_logger = logging.getLogger("medstock")
    medstock_logger.setLevel(medstock_level)

    # HTTP libraries log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if not any(isinstance(h, RichHandler) for h in medstock_logger.handlers):
        handler = RichHandler(
            show_time=verbose,
            show_path=verbose,
            markup=True,
            rich_tracebacks=True,
            tracebacks_show_locals=verbose,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        medstock_logger.addHandler(handler)
        medstock_logger.propagate = False
