"""Command-line entry point: eml2doc SOURCE DESTINATION."""

import argparse
import logging
import logging.handlers
import sys

from . import config, outlook_client
from .converter import convert_eml_to_doc

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
STARTUP_BUFFER_RECORDS = 1000


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="eml2doc",
        description="Convert an .eml message into a Word document through Outlook.",
    )
    parser.add_argument("source", help="Path to the .eml message to convert")
    parser.add_argument("destination", help="Path of the document Outlook should write")
    parser.add_argument("--settings", help="JSON settings file (default: $EML2DOC_SETTINGS or ./eml2doc_settings.json)")
    parser.add_argument("--format", dest="save_format", choices=sorted(config.SAVE_FORMATS), help="Outlook save format")
    parser.add_argument("--max-attempts", type=int, help="Window scan passes before giving up")
    parser.add_argument("--retry-delay", type=float, dest="retry_delay_seconds", help="Seconds to wait between scan passes")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every scan pass")
    return parser.parse_args(argv)


def configure_logging(verbose=False) -> logging.handlers.MemoryHandler:
    """Console logging, plus a buffer holding records until the activity log is known."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stderr)])
    root = logging.getLogger()
    root.setLevel(level)
    startup = logging.handlers.MemoryHandler(STARTUP_BUFFER_RECORDS, flushLevel=logging.CRITICAL + 1)
    root.addHandler(startup)
    return startup


def attach_activity_log(settings: config.ConversionSettings, startup: logging.handlers.MemoryHandler) -> None:
    """Open the activity log and replay the records buffered while settings loaded."""
    root = logging.getLogger()
    root.removeHandler(startup)
    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)
        startup.setTarget(file_handler)
        startup.flush()
    startup.setTarget(None)
    startup.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    startup = configure_logging(args.verbose)
    settings = config.load_settings(args.settings)
    settings = config.apply_cli_overrides(
        settings,
        save_format=args.save_format,
        max_attempts=args.max_attempts,
        retry_delay_seconds=args.retry_delay_seconds,
    )
    attach_activity_log(settings, startup)

    outlook_client.initialize_com()
    try:
        success = convert_eml_to_doc(args.source, args.destination, settings=settings)
    except Exception as e:
        logger.exception("CONVERT_ERROR src=%s", args.source)
        print(f"Error converting {args.source}\n{e}")
        return 1
    finally:
        outlook_client.uninitialize_com()

    tag = "[PASS]" if success else "[FAIL]"
    print(f"{tag} Converting {args.source} to {args.destination}")
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
