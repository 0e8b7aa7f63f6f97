"""One conversion attempt: rewrite, launch, correlate, save, clean up."""

import logging
import os
import tempfile
import time
import uuid
from pathlib import Path

from . import config
from .correlation import CorrelationPoller
from .header_rewriter import rewrite_message
from .outlook_client import OutlookClient, open_with_default_handler

logger = logging.getLogger(__name__)

TEMP_REMOVE_RETRIES = 3


def _temp_message_path(settings: config.ConversionSettings) -> Path:
    temp_dir = Path(settings.temp_dir) if settings.temp_dir else Path(tempfile.gettempdir())
    return temp_dir / f"{uuid.uuid4()}{config.TEMP_SUFFIX}"


def _remove_temp_file(path: Path) -> None:
    # Outlook may still hold the launched file open for a moment.
    for attempt in range(TEMP_REMOVE_RETRIES):
        try:
            path.unlink()
            return
        except FileNotFoundError:
            return
        except PermissionError:
            time.sleep(0.05 * (attempt + 1))
        except OSError as e:
            logger.error("TEMP_CLEANUP_FAIL path=%s error=%s", path, e)
            return
    logger.error("TEMP_CLEANUP_FAIL path=%s error=still_locked", path)


def convert_eml_to_doc(
    source_path,
    destination_path,
    *,
    client=None,
    settings: config.ConversionSettings | None = None,
    launcher=None,
    sleep=time.sleep,
    cancel_check=None,
) -> bool:
    """Convert ``source_path`` into a document at ``destination_path``.

    Returns True once the client has saved the document, False when no window
    for the message showed up within the retry budget. Unexpected automation
    or IO errors propagate. The temporary rewritten message is removed on
    every exit path.
    """
    settings = settings or config.ConversionSettings()
    launcher = launcher or open_with_default_handler
    source_label = str(source_path)
    destination = os.path.abspath(str(destination_path))

    logger.info("CONVERT_START src=%s dst=%s", source_label, destination)
    raw = Path(source_path).read_bytes()
    rewritten = rewrite_message(raw)

    temp_path = _temp_message_path(settings)
    try:
        temp_path.write_bytes(rewritten.data)
        logger.debug("TEMP_WRITTEN path=%s size=%d", temp_path, len(rewritten.data))

        launcher(temp_path)
        if client is None:
            client = OutlookClient.connect(settings.outlook_progid)

        poller = CorrelationPoller(
            client,
            settings.retry_policy(),
            save_format=settings.save_format_code,
            sleep=sleep,
            cancel_check=cancel_check,
        )
        success = poller.await_and_finalize(
            rewritten.token,
            rewritten.original_subject,
            destination,
            source_label=source_label,
        )
        logger.info(
            "CONVERT_END src=%s success=%s attempts=%d state=%s",
            source_label,
            success,
            poller.attempts,
            poller.state.value,
        )
        return success
    finally:
        _remove_temp_file(temp_path)
