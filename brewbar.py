#!/usr/bin/env python3
"""BrewBar: a small macOS panel that toggles Homebrew dev services."""

from __future__ import annotations

import logging
import pathlib
import subprocess
import sys
import tkinter as tk
import tkinter.font as tkfont
import tomllib
import webbrowser
from typing import Callable, Optional

from brew_services import BrewBarError, BrewRunner, ServiceController, ServiceStatus, StrictBrewRunner
from brewbar_logging import configure_logging
from brewbar_config import Config, load_or_create
from sync_coordinator import SyncCoordinator
from ui_dispatch import UiDispatcher

logger = logging.getLogger(__name__)


def _macos_set_app_name() -> None:
    """Override the macOS menu-bar app name to 'BrewBar' before NSApplication init.

    Must be called before tk.Tk(); Tk reads CFBundleName from NSBundle.mainBundle()
    when it creates the application menu.
    """
    if sys.platform != "darwin":
        return
    try:
        import ctypes
        _lib = ctypes.cdll.LoadLibrary("libobjc.dylib")
        _lib.objc_getClass.restype    = ctypes.c_void_p
        _lib.objc_getClass.argtypes   = [ctypes.c_char_p]
        _lib.sel_registerName.restype  = ctypes.c_void_p
        _lib.sel_registerName.argtypes = [ctypes.c_char_p]

        def _msg(restype, obj, sel_bytes, *args):
            fn = _lib.objc_msgSend
            fn.restype  = restype
            fn.argtypes = [ctypes.c_void_p, ctypes.c_void_p] + [type(a) for a in args]
            return fn(obj, _lib.sel_registerName(sel_bytes), *args)

        NSBundle = _lib.objc_getClass(b"NSBundle")
        NSString = _lib.objc_getClass(b"NSString")

        bundle = _msg(ctypes.c_void_p, NSBundle, b"mainBundle")
        info   = _msg(ctypes.c_void_p, bundle,   b"infoDictionary")
        key    = _msg(ctypes.c_void_p, NSString,  b"stringWithUTF8String:",
                      ctypes.c_char_p(b"CFBundleName"))
        val    = _msg(ctypes.c_void_p, NSString,  b"stringWithUTF8String:",
                      ctypes.c_char_p(b"BrewBar"))
        _msg(None, info, b"setObject:forKey:",
             ctypes.c_void_p(val), ctypes.c_void_p(key))
    except (OSError, AttributeError) as exc:
        logger.debug("could not set app name: %s", exc)


# ---------------------------------------------------------------------------
# Palette (light + dark)
# ---------------------------------------------------------------------------

_DARK: dict[str, str] = {
    "WINDOW_BG":      "#1E1E24",
    "TEXT_PRIMARY":   "#F5F5F7",
    "TEXT_SECONDARY": "#A0A0AB",
    "BUTTON_HOVER":   "#2A2A32",
    "SEPARATOR":      "#3A3A44",
    "DISABLED_TEXT":  "#8E8E99",
    "AMBER":          "#FBBF24",
    "ERROR_TEXT":     "#FCA5A5",
}

_LIGHT: dict[str, str] = {
    "WINDOW_BG":      "#F5F5F7",
    "TEXT_PRIMARY":   "#1F2937",
    "TEXT_SECONDARY": "#636B78",
    "BUTTON_HOVER":   "#E5E7EB",
    "SEPARATOR":      "#D1D5DB",
    "DISABLED_TEXT":  "#7A828E",
    "AMBER":          "#B45309",
    "ERROR_TEXT":     "#B91C1C",
}


def _detect_system_theme() -> str:
    """Return 'dark' or 'light' based on macOS system appearance."""
    try:
        result = subprocess.run(
            ["defaults", "read", "-g", "AppleInterfaceStyle"],
            capture_output=True, timeout=3,
        )
    except (OSError, subprocess.TimeoutExpired):
        return "light"
    return "dark" if b"Dark" in result.stdout else "light"


# ---------------------------------------------------------------------------
# Label-based button (macOS Aqua ignores bg/fg on tk.Button)
# ---------------------------------------------------------------------------

class LabelButton:
    """A flat, left-aligned tk.Label that behaves like a menu item."""

    def __init__(
        self,
        parent: tk.Widget,
        palette: dict[str, str],
        text: str = "",
        font: tuple = (),
        command: Optional[Callable] = None,
    ) -> None:
        self._palette = palette
        self._command = command
        self._enabled = True

        self._label = tk.Label(
            parent,
            text=text,
            font=font,
            anchor="w",
            bg=palette["WINDOW_BG"],
            fg=palette["TEXT_PRIMARY"],
            padx=12,
            pady=4,
            cursor="pointinghand",
        )
        self._label.bind("<Button-1>", self._on_click)
        self._label.bind("<Enter>", self._on_enter)
        self._label.bind("<Leave>", self._on_leave)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def pack(self, **kwargs) -> None:
        self._label.pack(**kwargs)

    def set_text(self, text: str) -> None:
        self._label.configure(text=text)

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        fg = self._palette["TEXT_PRIMARY"] if enabled else self._palette["DISABLED_TEXT"]
        self._label.configure(
            fg=fg, bg=self._palette["WINDOW_BG"],
            cursor="pointinghand" if enabled else "",
        )

    def _on_click(self, _event) -> None:
        if self._enabled and self._command:
            self._command()

    def _on_enter(self, _event) -> None:
        if self._enabled:
            self._label.configure(bg=self._palette["BUTTON_HOVER"])

    def _on_leave(self, _event) -> None:
        self._label.configure(bg=self._palette["WINDOW_BG"])


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

class BrewBarApp:
    def __init__(self, config: Config) -> None:
        self._config = config
        self._quitting = False

        self._dispatcher = UiDispatcher()
        runner_cls = StrictBrewRunner if config.strict_commands else BrewRunner
        runner = runner_cls(config.brew_path, timeout=config.command_timeout)
        controller = ServiceController(
            runner, config.formulae, self._dispatcher.post, on_error=self._on_command_error,
        )
        self._coordinator = SyncCoordinator(
            controller,
            self._dispatcher,
            observer=self._on_status_changed,
            settle_delay=config.settle_delay,
            coupling=config.coupling,
        )

        self._build_ui()
        self._dispatcher.attach(self._root)
        self._coordinator.refresh()

    def _resolve_font(self) -> str:
        available = tkfont.families()
        for candidate in (".AppleSystemUIFont", "SF Pro Text", "Helvetica Neue"):
            if candidate in available:
                return candidate
        return "TkDefaultFont"

    # ---- UI construction -----------------------------------------------

    def _build_ui(self) -> None:
        root = tk.Tk()
        root.title("BrewBar")
        root.resizable(False, False)
        root.attributes("-topmost", True)
        root.protocol("WM_DELETE_WINDOW", self._on_quit)
        self._root = root

        self._palette = _DARK if _detect_system_theme() == "dark" else _LIGHT
        pal = self._palette
        root.configure(bg=pal["WINDOW_BG"], padx=8, pady=8)
        fn = self._resolve_font()

        self._busy_lbl = tk.Label(
            root, text="", anchor="w",
            bg=pal["WINDOW_BG"], fg=pal["AMBER"], font=(fn, 11),
        )
        self._busy_lbl.pack(fill=tk.X, padx=12)

        self._service_btns: dict[str, LabelButton] = {}
        for role in self._config.toggle_roles:
            btn = LabelButton(root, pal, font=(fn, 13),
                              command=lambda r=role: self._on_toggle(r))
            btn.pack(fill=tk.X)
            self._service_btns[role] = btn

        self._separator()
        self._action_btns: list[LabelButton] = list(self._service_btns.values())
        for text, command in (
            ("🚀 Start All Services", self._on_start_all),
            ("🛑 Stop All Services", self._on_stop_all),
            ("🔄 Refresh", self._on_refresh),
            (None, None),
            ("🔗 Open phpMyAdmin", self._on_open_pma),
            ("📁 Open Webroot", self._on_open_webroot),
        ):
            if text is None:
                self._separator()
                continue
            btn = LabelButton(root, pal, text=text, font=(fn, 13), command=command)
            btn.pack(fill=tk.X)
            self._action_btns.append(btn)

        self._separator()
        self._quit_btn = LabelButton(root, pal, text="Quit", font=(fn, 13), command=self._on_quit)
        self._quit_btn.pack(fill=tk.X)

        self._error_lbl = tk.Label(
            root, text="", anchor="w", justify=tk.LEFT, wraplength=220,
            bg=pal["WINDOW_BG"], fg=pal["ERROR_TEXT"], font=(fn, 10),
        )
        self._error_lbl.pack(fill=tk.X, padx=12)

        root.bind("<FocusIn>", self._on_focus_in)
        self._on_status_changed(self._coordinator.current_status(), self._coordinator.busy)

    def _separator(self) -> None:
        tk.Frame(self._root, bg=self._palette["SEPARATOR"], height=1).pack(
            fill=tk.X, padx=12, pady=6)

    # ---- Observer -------------------------------------------------------

    def _on_status_changed(self, status: ServiceStatus, busy: bool) -> None:
        for role, btn in self._service_btns.items():
            dot = "🟢" if status.get(role, False) else "🔴"
            btn.set_text(f"{dot} {self._config.labels.get(role, role)}")
        for btn in self._action_btns:
            btn.set_enabled(not busy and not self._quitting)
        if self._quitting:
            self._busy_lbl.configure(text="Stopping services…")
        else:
            self._busy_lbl.configure(text="Working…" if busy else "")
        if busy:
            self._error_lbl.configure(text="")

    def _on_command_error(self, name: str, exc: Exception) -> None:
        self._error_lbl.configure(text=f"{self._config.labels.get(name, name)}: {exc}")

    # ---- User actions ---------------------------------------------------

    def _on_toggle(self, role: str) -> None:
        self._coordinator.submit(self._coordinator.toggle(role))

    def _on_start_all(self) -> None:
        self._coordinator.submit(self._coordinator.start_all())

    def _on_stop_all(self) -> None:
        self._coordinator.submit(self._coordinator.stop_all())

    def _on_refresh(self) -> None:
        self._coordinator.refresh()

    def _on_focus_in(self, event: tk.Event) -> None:
        if event.widget is self._root and not self._coordinator.busy:
            self._coordinator.refresh()

    def _on_open_pma(self) -> None:
        webbrowser.open(self._config.phpmyadmin_url)

    def _on_open_webroot(self) -> None:
        try:
            subprocess.Popen(["open", self._config.webroot])
        except OSError as exc:
            logger.warning("could not open %s: %s", self._config.webroot, exc)

    # ---- Quit -----------------------------------------------------------

    def _on_quit(self) -> None:
        if self._quitting:
            return
        self._quitting = True
        self._quit_btn.set_text("Quitting...")
        self._quit_btn.set_enabled(False)
        self._on_status_changed(self._coordinator.current_status(), True)
        self._root.update_idletasks()

        self._coordinator.shutdown(stop_services=self._config.stop_on_quit)
        self._dispatcher.detach()
        self._root.destroy()

    def run(self) -> None:
        self._root.mainloop()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    _macos_set_app_name()   # must run before tk.Tk()
    config_path = pathlib.Path(__file__).parent / "config.toml"

    try:
        config = load_or_create(config_path)
    except (KeyError, ValueError, BrewBarError, tomllib.TOMLDecodeError) as exc:
        print(f"Error: invalid config.toml: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.log_path(config_path.parent))
    logger.info("starting with brew at %s", config.brew_path)

    app = BrewBarApp(config)
    app.run()


if __name__ == "__main__":
    main()
