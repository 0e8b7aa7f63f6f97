import unittest
from unittest.mock import MagicMock, patch

from eml2doc import outlook_client


class OutlookClientTests(unittest.TestCase):
    def _inspector(self, subject):
        inspector = MagicMock()
        inspector.CurrentItem.Subject = subject
        return inspector

    def test_lists_windows_with_current_item(self):
        empty = MagicMock()
        empty.CurrentItem = None
        app = MagicMock()
        app.Inspectors = [self._inspector("one"), None, empty, self._inspector("two")]

        windows = outlook_client.OutlookClient(app).list_item_windows()

        self.assertEqual([w.get_subject() for w in windows], ["one", "two"])

    def test_window_maps_to_mail_item(self):
        inspector = self._inspector("token")
        window = outlook_client.OutlookItemWindow(inspector, inspector.CurrentItem)

        window.set_subject("Original")
        window.save_as("C:\\out\\a.doc", 4)
        window.close(discard=True)

        item = inspector.CurrentItem
        self.assertEqual(item.Subject, "Original")
        item.SaveAs.assert_called_once_with("C:\\out\\a.doc", 4)
        item.Close.assert_called_once_with(outlook_client.OL_DISCARD)

    def test_close_without_discard_saves(self):
        item = MagicMock()
        outlook_client.OutlookItemWindow(MagicMock(), item).close(discard=False)
        item.Close.assert_called_once_with(outlook_client.OL_SAVE)

    def test_connect_without_pywin32_raises(self):
        with patch.object(outlook_client, "OUTLOOK_AVAILABLE", False):
            with self.assertRaises(outlook_client.OutlookUnavailableError):
                outlook_client.OutlookClient.connect()

    def test_connect_dispatches_progid(self):
        win32com = MagicMock()
        with patch.object(outlook_client, "OUTLOOK_AVAILABLE", True), patch.object(
            outlook_client, "win32com", win32com, create=True
        ):
            client = outlook_client.OutlookClient.connect("Outlook.Application")
        win32com.client.Dispatch.assert_called_once_with("Outlook.Application")
        self.assertIs(client.app, win32com.client.Dispatch.return_value)


class DefaultHandlerTests(unittest.TestCase):
    def test_linux_uses_xdg_open(self):
        with patch.object(outlook_client.sys, "platform", "linux"), patch.object(
            outlook_client.subprocess, "run"
        ) as run:
            outlook_client.open_with_default_handler("/tmp/a.eml")
        run.assert_called_once_with(["xdg-open", "/tmp/a.eml"], check=True)

    def test_macos_uses_open(self):
        with patch.object(outlook_client.sys, "platform", "darwin"), patch.object(
            outlook_client.subprocess, "run"
        ) as run:
            outlook_client.open_with_default_handler("/tmp/a.eml")
        run.assert_called_once_with(["open", "/tmp/a.eml"], check=True)

    def test_windows_uses_startfile(self):
        with patch.object(outlook_client.sys, "platform", "win32"), patch.object(
            outlook_client.os, "startfile", create=True
        ) as startfile:
            outlook_client.open_with_default_handler("C:\\tmp\\a.eml")
        startfile.assert_called_once_with("C:\\tmp\\a.eml")


if __name__ == "__main__":
    unittest.main()
