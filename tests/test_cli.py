import io
import json
import logging
import shutil
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from eml2doc import cli, config


class CliTests(unittest.TestCase):
    def _preserve_root_logging(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level

        def restore():
            for handler in list(root.handlers):
                if handler not in saved_handlers:
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(saved_level)

        self.addCleanup(restore)
        return restore

    def _run(self, argv, **convert_kwargs):
        out = io.StringIO()
        with patch.object(cli, "configure_logging"), patch.object(cli, "attach_activity_log"), patch.object(
            cli.config, "load_settings", return_value=config.ConversionSettings(log_file=None)
        ), patch.object(cli, "convert_eml_to_doc", **convert_kwargs) as convert, redirect_stdout(out):
            code = cli.main(argv)
        return code, out.getvalue(), convert

    def test_pass_line_and_exit_code(self):
        code, out, convert = self._run(["in.eml", "out.doc"], return_value=True)
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "[PASS] Converting in.eml to out.doc")
        args, kwargs = convert.call_args
        self.assertEqual(args, ("in.eml", "out.doc"))
        self.assertEqual(kwargs["settings"].save_format, "doc")

    def test_fail_line_and_exit_code(self):
        code, out, _ = self._run(["in.eml", "out.doc"], return_value=False)
        self.assertEqual(code, 1)
        self.assertEqual(out.strip(), "[FAIL] Converting in.eml to out.doc")

    def test_exception_is_reported(self):
        with self.assertLogs("eml2doc.cli", level="ERROR") as logs:
            code, out, _ = self._run(["in.eml", "out.doc"], side_effect=OSError("Outlook unreachable"))
        self.assertEqual(code, 1)
        self.assertIn("Error converting in.eml", out)
        self.assertIn("Outlook unreachable", out)
        self.assertIn("CONVERT_ERROR src=in.eml", logs.output[0])

    def test_cli_flags_override_settings(self):
        _, _, convert = self._run(
            ["in.eml", "out.rtf", "--format", "rtf", "--max-attempts", "5", "--retry-delay", "0.25"],
            return_value=True,
        )
        settings = convert.call_args.kwargs["settings"]
        self.assertEqual(settings.save_format_code, 1)
        self.assertEqual(settings.max_attempts, 5)
        self.assertEqual(settings.retry_delay_seconds, 0.25)

    def test_settings_events_reach_activity_log(self):
        base = Path(tempfile.mkdtemp(prefix="eml2doc_cli_"))
        self.addCleanup(lambda: shutil.rmtree(base, ignore_errors=True))
        log_path = base / "activity.log"
        settings_path = base / "settings.json"
        settings_path.write_text(
            json.dumps({"max_attempts": 7, "colour": "blue", "log_file": str(log_path)}), encoding="utf-8"
        )

        restore_logging = self._preserve_root_logging()

        with patch.object(cli, "convert_eml_to_doc", return_value=True) as convert, patch(
            "sys.stderr", io.StringIO()
        ), redirect_stdout(io.StringIO()):
            code = cli.main(["in.eml", "out.doc", "--settings", str(settings_path), "--format", "rtf"])
            logging.getLogger("eml2doc.cli").info("AFTER_SETUP marker")

        restore_logging()
        self.assertEqual(code, 0)
        self.assertEqual(convert.call_args.kwargs["settings"].max_attempts, 7)
        text = log_path.read_text(encoding="utf-8")
        self.assertIn("OVERRIDE_ACCEPT key=max_attempts", text)
        self.assertIn("OVERRIDE_ACCEPT key=save_format value=rtf source=cli", text)
        self.assertIn("OVERRIDE_REJECT key=colour reason=not_allowed", text)
        self.assertIn("AFTER_SETUP marker", text)
        self.assertLess(text.index("OVERRIDE_ACCEPT"), text.index("AFTER_SETUP"))

    def test_no_activity_log_when_disabled(self):
        self._preserve_root_logging()
        root = logging.getLogger()
        with patch("sys.stderr", io.StringIO()):
            startup = cli.configure_logging()
        before = list(root.handlers)
        cli.attach_activity_log(config.ConversionSettings(log_file=None), startup)
        self.assertNotIn(startup, root.handlers)
        self.assertFalse(any(isinstance(h, logging.FileHandler) for h in root.handlers if h not in before))

    def test_missing_arguments_exit(self):
        with self.assertRaises(SystemExit), redirect_stdout(io.StringIO()), patch("sys.stderr", io.StringIO()):
            cli.parse_args(["only-one.eml"])


if __name__ == "__main__":
    unittest.main()
