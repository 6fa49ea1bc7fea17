import logging
import coloredlogs
from pathlib import Path
from typing import Optional

LOGS_DIR = Path.cwd() / "data" / "rehearsal_logs"

def setup_global_logger(level: str = "INFO"):
    logger = logging.getLogger("rehearse")
    logger.setLevel(logging.DEBUG)

    # coloredlogs installs its own console handler on 'logger'
    coloredlogs.install(level=level, logger=logger, fmt='%(asctime)s %(name)s %(levelname)s %(message)s')
    return logger

def set_log_level(level: str):
    # install() replaces the console handler it added before
    return setup_global_logger(level)

def get_run_logger(pr_number: int, logs_dir: Optional[Path] = None):
    """Creates a debug logger for one rehearsal run, writing every processed event to a file."""
    run_log_dir = Path(logs_dir) if logs_dir else LOGS_DIR
    run_log_dir.mkdir(parents=True, exist_ok=True)
    log_file_path = run_log_dir / f"rehearse-{pr_number}.log"

    run_logger = logging.getLogger(f"rehearse.run.{pr_number}")
    run_logger.setLevel(logging.DEBUG)
    # Event noise stays out of the console
    run_logger.propagate = False

    for handler in list(run_logger.handlers):
        run_logger.removeHandler(handler)
        handler.close()

    fh = logging.FileHandler(log_file_path)
    fh.setLevel(logging.DEBUG)
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    fh.setFormatter(formatter)
    run_logger.addHandler(fh)

    return run_logger, str(log_file_path)

def close_run_logger(run_logger: logging.Logger):
    for handler in list(run_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            run_logger.removeHandler(handler)

# Initialize global logger
logger = setup_global_logger()
