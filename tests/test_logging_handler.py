import logging

from lifeflow.core.logging_handler import setup_logger


def test_setup_logger_writes_file_once(tmp_path) -> None:
    log_file = tmp_path / "logs" / "engine.log"
    logger = setup_logger("lifeflow.test_file", log_file=log_file, console=False)
    again = setup_logger("lifeflow.test_file", log_file=log_file, console=False)

    logger.info("timer started")
    for handler in logger.handlers:
        handler.flush()

    assert again is logger
    assert len(logger.handlers) == 1
    assert logger.level == logging.INFO
    assert " - lifeflow.test_file - INFO - timer started" in log_file.read_text()

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
