"""Outlook automation over COM (pywin32) and the OS default-handler launcher."""

import logging
import os
import subprocess
import sys

# Windows-specific imports (Outlook automation is unavailable elsewhere)
try:
    import pythoncom
    import win32com.client
    OUTLOOK_AVAILABLE = True
except ImportError:
    OUTLOOK_AVAILABLE = False

from .config import OUTLOOK_PROGID

logger = logging.getLogger(__name__)

# OlInspectorClose
OL_SAVE = 0
OL_DISCARD = 1


class OutlookUnavailableError(RuntimeError):
    pass


class OutlookItemWindow:
    """An open inspector and the mail item it currently shows."""

    def __init__(self, inspector, item):
        self.inspector = inspector
        self.item = item

    def get_subject(self):
        return self.item.Subject

    def set_subject(self, text):
        self.item.Subject = text

    def save_as(self, path, save_format):
        self.item.SaveAs(path, save_format)

    def close(self, discard=True):
        self.item.Close(OL_DISCARD if discard else OL_SAVE)


class OutlookClient:
    def __init__(self, app):
        self.app = app

    @classmethod
    def connect(cls, progid=OUTLOOK_PROGID):
        if not OUTLOOK_AVAILABLE:
            raise OutlookUnavailableError("pywin32 not available - Outlook automation requires Windows")
        logger.info("CONNECT_OUTLOOK progid=%s", progid)
        return cls(win32com.client.Dispatch(progid))

    def list_item_windows(self):
        windows = []
        for inspector in self.app.Inspectors:
            if inspector is None:
                continue
            item = inspector.CurrentItem
            if item is None:
                continue
            windows.append(OutlookItemWindow(inspector, item))
        return windows


def initialize_com():
    if OUTLOOK_AVAILABLE:
        pythoncom.CoInitialize()


def uninitialize_com():
    if OUTLOOK_AVAILABLE:
        pythoncom.CoUninitialize()


def open_with_default_handler(path):
    """Open ``path`` with whatever application is registered for its type."""
    path = str(path)
    logger.info("LAUNCH path=%s", path)
    if sys.platform == "win32":
        os.startfile(path)
    elif sys.platform == "darwin":
        subprocess.run(["open", path], check=True)
    else:
        subprocess.run(["xdg-open", path], check=True)
