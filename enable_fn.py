#!/usr/bin/python3
"""enable-fn — interactive Fn key fix for Apple-style and external keyboards.

Many keyboards (Apple, or ones the kernel mistakes for Apple) are driven by
hid_apple, whose ``fnmode`` parameter decides whether F1–F12 or the media
keys win by default.  On keyboards like the NuPhy Halo 75 V1 the auto mode
(3) behaves like 0 and F1–F12 never fire, so we pin fnmode=2.

The fix can be applied temporarily (sysfs write, lost on reboot) or
permanently (modprobe.d option + initramfs rebuild), and undone.
"""

import argparse
import os
import shutil
import subprocess
import sys
import time
from datetime import datetime
from pathlib import Path

# ── Constants ────────────────────────────────────────────────────────────────

MODULE = "hid_apple"
CONF_FILE = Path("/etc/modprobe.d/hid_apple.conf")
CONF_LINE = "options hid_apple fnmode=2"
BACKUP_DIR = Path("/var/backups/enable-fn.d")
SYS_PATH = Path("/sys/module/hid_apple/parameters/fnmode")

FIX_VALUE = 2
AUTO_VALUE = 3

FNMODES = {
    0: "macOS-style (media keys by default, Fn+F for F1–F12)",
    1: "Fn-locked macOS style",
    2: "Windows-style (F1–F12 default, Fn for media) — recommended "
       "for external keyboards",
    3: "Auto-detect (kernel chooses per device, may fail on some "
       "external keyboards)",
}

INITRAMFS_CMD = ["update-initramfs", "-u", "-k", "all"]
TOOLS = ("modprobe", "update-initramfs")

ACTIONS = (
    "temporary", "permanent", "permanent-reboot", "undo", "dryrun", "status",
)

EXIT_NO_ROOT = 2
EXIT_INTERRUPTED = 130


# ── Glyphs ───────────────────────────────────────────────────────────────────

class _I:
    LOG   = "[*]"
    OK    = "[✓]"
    WARN  = "[!]"
    ERROR = "[✗]"
    ARROW = "→"
    RULE  = "─" * 46


# ── ANSI helpers ─────────────────────────────────────────────────────────────

class _C:
    BOLD   = "\033[1m"
    RED    = "\033[1;31m"
    GREEN  = "\033[1;32m"
    YELLOW = "\033[1;33m"
    BLUE   = "\033[1;34m"
    RESET  = "\033[0m"

# TTY check runs once at import time against the real stdout.
if not sys.stdout.isatty():
    _C.BOLD = _C.RED = _C.GREEN = _C.YELLOW = _C.BLUE = ""
    _C.RESET = ""


def _banner(title: str) -> None:
    print(f"{_C.BOLD}{title}{_C.RESET}")
    print(_I.RULE)


def _log(msg: str) -> None:
    print(f"{_C.BLUE}{_I.LOG}{_C.RESET} {msg}")


def _info(msg: str) -> None:
    print(f"{_C.GREEN}{_I.OK}{_C.RESET} {msg}")


def _warn(msg: str) -> None:
    print(f"{_C.YELLOW}{_I.WARN}{_C.RESET} {msg}")


def _error(msg: str) -> None:
    print(f"{_C.RED}{_I.ERROR}{_C.RESET} {msg}", file=sys.stderr)


def _dry(msg: str) -> None:
    print(f"{_C.YELLOW}[DRY RUN]{_C.RESET} {msg}")


def _bullet(msg: str) -> None:
    print(f"{_I.ARROW} {msg}")


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S")


# ── FnKeyFix ─────────────────────────────────────────────────────────────────

class FnKeyFix:
    """All actions of the utility, bound to a set of target paths.

    Paths default to the real system locations; tests point them at a
    temporary directory.
    """

    def __init__(self, dry_run: bool = False, yes: bool = False,
                 quiet: bool = False, conf_file=None, sys_path=None,
                 backup_dir=None):
        self.dry_run = dry_run
        self.yes = yes
        self.quiet = quiet
        self.conf_file = Path(conf_file or CONF_FILE)
        self.sys_path = Path(sys_path or SYS_PATH)
        self.backup_dir = Path(backup_dir or BACKUP_DIR)

    # ── helpers ───────────────────────────────────────────────────────────

    def require_root(self) -> None:
        """Exit with status 2 unless running as root (no-op in dry-run)."""
        if self.dry_run:
            return
        if os.geteuid() != 0:
            _error("This action requires root. Re-run with sudo.")
            sys.exit(EXIT_NO_ROOT)

    def run_cmd(self, cmd):
        """Execute *cmd*, or print it if dry-run.

        With quiet the "Running:" echo is suppressed; warnings and errors
        still print.
        """
        pretty = " ".join(str(c) for c in cmd)
        if self.dry_run:
            _dry(pretty)
            return None
        if not self.quiet:
            _log(f"Running: {pretty}")
        try:
            result = subprocess.run(cmd)
        except OSError as exc:
            _error(f"Cannot run {cmd[0]}: {exc}")
            return subprocess.CompletedProcess(cmd, 127)
        if result.returncode != 0:
            _warn(f"  ↳ exited {result.returncode}: {pretty}")
        return result

    @staticmethod
    def has_tool(name: str) -> bool:
        return shutil.which(name) is not None

    def backup_file(self, path: Path):
        """Copy *path* into the backup dir; return the backup path.

        Never overwrites an earlier backup taken within the same second.
        """
        stamp = _timestamp()
        dest = self.backup_dir / f"{path.name}.{stamp}.bak"
        n = 1
        while dest.exists():
            dest = self.backup_dir / f"{path.name}.{stamp}.{n}.bak"
            n += 1
        if self.dry_run:
            _dry(f"cp -a {path} {dest}")
            return None
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, dest)
        _info(f"Backup saved to {dest}")
        return dest

    def read_conf(self):
        """Config file text, or None when missing or unreadable.

        Undecodable bytes survive a read/write cycle via surrogateescape.
        """
        try:
            with open(self.conf_file, encoding="utf-8",
                      errors="surrogateescape") as fh:
                return fh.read()
        except OSError:
            return None

    def has_conf_line(self) -> bool:
        """True when the exact config line is present (grep -Fx semantics)."""
        text = self.read_conf()
        if text is None:
            return False
        return CONF_LINE in text.splitlines()

    def ensure_conf_file(self) -> None:
        """Back up the config file, or create it empty when missing."""
        if self.conf_file.exists():
            self.backup_file(self.conf_file)
            return
        if self.dry_run:
            _dry(f"create {self.conf_file} (mode 0644)")
            return
        self.conf_file.parent.mkdir(parents=True, exist_ok=True)
        self.conf_file.touch()
        os.chmod(self.conf_file, 0o644)
        _info(f"Created {self.conf_file}")

    def append_conf(self) -> bool:
        """Append the config line unless already present.

        Returns True when the file was written.
        """
        if self.has_conf_line():
            _info(f"Line already present in {self.conf_file}.")
            return False
        if self.dry_run:
            _dry(f"append '{CONF_LINE}' to {self.conf_file}")
            return False

        current = self.read_conf() or ""
        prefix = "" if not current or current.endswith("\n") else "\n"
        with open(self.conf_file, "a", encoding="utf-8",
                  errors="surrogateescape") as fh:
            fh.write(f"{prefix}{CONF_LINE}\n")
        _info(f"Added configuration line to {self.conf_file}")
        return True

    def remove_conf_line(self) -> bool:
        """Delete every exact copy of the config line, then verify.

        A missing file is a warning, not an error.  Returns True when a line
        was removed.
        """
        if not self.conf_file.exists():
            _warn(f"{self.conf_file} not present.")
            return False

        text = self.read_conf()
        if text is None:
            _error(f"Cannot read {self.conf_file}.")
            return False

        self.backup_file(self.conf_file)

        lines = text.splitlines(keepends=True)
        kept = [line for line in lines if line.rstrip("\n") != CONF_LINE]
        if len(kept) == len(lines):
            _info(f"Line not present in {self.conf_file}, nothing to remove.")
            return False

        if self.dry_run:
            _dry(f"remove '{CONF_LINE}' from {self.conf_file}")
            return False

        with open(self.conf_file, "w", encoding="utf-8",
                  errors="surrogateescape") as fh:
            fh.writelines(kept)

        if self.has_conf_line():
            _error(f"Line still present in {self.conf_file} after removal.")
            return False
        _info(f"Removed line from {self.conf_file}")
        return True

    def update_initramfs(self) -> bool:
        if not self.has_tool("update-initramfs"):
            _warn("update-initramfs not found, skipping.")
            return False
        _log("Updating initramfs...")
        result = self.run_cmd(INITRAMFS_CMD)
        if result is None:
            return True
        if result.returncode != 0:
            _error("Initramfs update failed.")
            return False
        _info("Initramfs updated.")
        return True

    def read_fnmode(self):
        """Current runtime fnmode as a string, or None when unreadable."""
        try:
            return self.sys_path.read_text().strip()
        except OSError:
            return None

    def write_sysfs(self, value: int) -> bool:
        """Write *value* to the runtime parameter, loading the module first
        when the parameter file is not writable yet."""
        if value not in FNMODES:
            raise ValueError(f"fnmode must be one of {sorted(FNMODES)}, got {value!r}")

        if not os.access(self.sys_path, os.W_OK):
            _warn(f"Sysfs path {self.sys_path} not writable, loading module...")
            result = self.run_cmd(["modprobe", MODULE])
            if result is not None:
                if result.returncode != 0:
                    _error(f"Failed to load {MODULE}")
                    return False
                time.sleep(0.2)

        if self.dry_run:
            _dry(f"echo {value} > {self.sys_path}")
            return True
        try:
            with open(self.sys_path, "w") as fh:
                fh.write(f"{value}\n")
        except OSError as exc:
            _error(f"Cannot write {self.sys_path}: {exc}")
            return False
        _info(f"Wrote {value} to {self.sys_path}")
        return True

    def confirm(self, prompt: str) -> bool:
        """Ask a y/N question.  Skipped (accepted) with --yes or --dry-run."""
        if self.yes or self.dry_run:
            return True
        try:
            answer = input(f"{_C.BOLD}{prompt} [y/N]: {_C.RESET}").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return False
        return answer in ("y", "Y")

    # ── actions ───────────────────────────────────────────────────────────

    def temporary(self) -> bool:
        _log(f"Temporary mode: apply fnmode={FIX_VALUE} immediately "
             "(resets on reboot).")
        _bullet("Function keys (F1–F12) will behave as real F keys.")
        _bullet("Media controls (volume, brightness) require holding Fn.")
        _bullet("This fixes external keyboards like NuPhy Halo 75 V1.")
        if not self.confirm("Proceed?"):
            return False
        self.require_root()
        if not self.write_sysfs(FIX_VALUE):
            _error("Temporary change failed.")
            return False
        return True

    def permanent(self, reboot: bool = False) -> bool:
        _log(f"Permanent mode: set fnmode={FIX_VALUE} at boot time via "
             "modprobe config.")
        _bullet(f"Creates or updates {self.conf_file}")
        _bullet("Ensures F1–F12 work correctly for external keyboards")
        _bullet("Runs update-initramfs so setting is applied at boot")
        if not self.confirm("Proceed?"):
            return False
        self.require_root()

        self.ensure_conf_file()
        self.append_conf()
        self.update_initramfs()
        _info("Permanent change applied. Effective after reboot.")

        if reboot and self.confirm("Reboot now?"):
            self.run_cmd(["reboot"])
        return True

    def undo(self) -> bool:
        _log("Undo permanent fnmode change (restore default behavior).")
        _bullet("F1–F12 may revert to media keys by default")
        _bullet("Fn key may or may not activate F keys depending on kernel")
        if not self.confirm("Proceed?"):
            return False
        self.require_root()

        self.remove_conf_line()
        self.update_initramfs()
        _info("Undo completed.")
        return True

    def dryrun(self) -> None:
        """Print what the permanent fix would do; never touches the system."""
        _log("Dry-run — showing actions (no changes will be made).")
        if self.conf_file.exists():
            print(f"Would back up {_C.BOLD}{self.conf_file}{_C.RESET} "
                  f"to {self.backup_dir}/")
        else:
            print(f"Would create {_C.BOLD}{self.conf_file}{_C.RESET} "
                  "(mode 0644)")
        if self.has_conf_line():
            print(f"Would skip appending (already present):\n  {CONF_LINE}\n")
        else:
            print(f"Would append:\n  {CONF_LINE}\n")
        print(f"Would run: {' '.join(INITRAMFS_CMD)}")
        if not self.has_tool("update-initramfs"):
            _warn("update-initramfs not found; the rebuild would be skipped.")

    def read_status(self) -> dict:
        """Collect the three independent facets shown by status()."""
        text = self.read_conf()
        return {
            "fnmode": self.read_fnmode(),
            "conf_exists": self.conf_file.exists(),
            "conf_readable": text is not None,
            "line_present": text is not None and CONF_LINE in text.splitlines(),
            "tools": {tool: self.has_tool(tool) for tool in TOOLS},
        }

    def status(self) -> dict:
        _log("Status:")
        st = self.read_status()

        fn = st["fnmode"]
        if fn is None:
            _warn("  sysfs not readable; module may be missing.")
        else:
            meaning = FNMODES.get(int(fn)) if fn.isdigit() else None
            print(f"  sysfs fnmode: {fn}"
                  + (f" ({meaning})" if meaning else ""))
            if fn == str(AUTO_VALUE):
                _warn(f"  fnmode={AUTO_VALUE} detected (auto mode).")
                _bullet("May behave incorrectly on external keyboards "
                        "like NuPhy Halo 75 V1.")
                _bullet("F1–F12 may not work even with Fn pressed.")
                _bullet(f"Recommend using fnmode={FIX_VALUE} for correct "
                        "F-key behavior.")

        if not st["conf_exists"]:
            _warn(f"  {self.conf_file} does not exist")
        elif not st["conf_readable"]:
            _warn(f"  {self.conf_file} exists but is not readable "
                  "(try again as root)")
        elif st["line_present"]:
            _info(f"  Config line present in {self.conf_file} "
                  "(permanent fix applied)")
        else:
            _warn(f"  {self.conf_file} exists but line missing "
                  "(permanent fix not applied)")

        for tool, found in st["tools"].items():
            if found:
                _info(f"  {tool} available")
            else:
                _warn(f"  {tool} not found")
        return st

    # ── menu ──────────────────────────────────────────────────────────────

    def menu_header(self) -> None:
        if sys.stdout.isatty():
            print("\033[H\033[2J", end="")
        _banner("Fn Key Fix Utility for Apple-style and external keyboards")
        print("Fixes F1–F12 behavior on Linux for external keyboards like "
              "NuPhy Halo 75 V1.")
        print()
        print("fnmode values:")
        for value, desc in FNMODES.items():
            print(f"  {value} {_I.ARROW} {desc}")
        print()

    def dispatch(self, action: str) -> None:
        if action == "temporary":
            self.temporary()
        elif action == "permanent":
            self.permanent(reboot=False)
        elif action == "permanent-reboot":
            self.permanent(reboot=True)
        elif action == "undo":
            self.undo()
        elif action == "dryrun":
            self.dryrun()
        elif action == "status":
            self.status()
        else:
            raise ValueError(f"unknown action: {action}")

    def menu(self) -> bool:
        """Show the menu once and run the chosen action.

        Returns False when the user asked to exit.
        """
        self.menu_header()
        print(f"1) Temporary: apply fnmode={FIX_VALUE} now")
        print(f"2) Permanent: set fnmode={FIX_VALUE} for all future boots")
        print("3) Permanent + Reboot")
        print("4) Undo Permanent (restore default behavior)")
        print("5) Dry-run (show what would happen)")
        print("6) Status (show current mode and warnings)")
        print("7) Exit")
        print()
        try:
            choice = input("Choose [1-7]: ").strip()
        except EOFError:
            print()
            return False
        print()

        choices = {str(i): a for i, a in enumerate(ACTIONS, start=1)}
        if choice == "7":
            return False
        if choice in choices:
            self.dispatch(choices[choice])
        else:
            _warn("Invalid option.")
        return True

    def run(self) -> None:
        while self.menu():
            print()
            try:
                input("Press Enter to return to menu...")
            except EOFError:
                print()
                return


# ── CLI ──────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="enable-fn",
        description="Fix F1–F12 behavior of Apple-style and external "
                    "keyboards by setting hid_apple fnmode=2.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  sudo enable-fn                          # interactive menu
  enable-fn --action status               # show current mode and warnings
  sudo enable-fn --action permanent -y    # apply permanently, no prompt
  enable-fn --dry-run                     # menu, but nothing is changed
""",
    )
    p.add_argument(
        "--action", choices=ACTIONS,
        help="run a single action and exit instead of showing the menu",
    )
    p.add_argument(
        "--dry-run", action="store_true",
        help="print commands and file edits without executing them",
    )
    p.add_argument(
        "-y", "--yes", action="store_true",
        help="skip interactive confirmation prompts",
    )
    p.add_argument(
        "-q", "--quiet", action="store_true",
        help="suppress per-command output; warnings and errors still print",
    )
    return p


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    fixer = FnKeyFix(dry_run=args.dry_run, yes=args.yes, quiet=args.quiet)

    try:
        if args.action:
            fixer.dispatch(args.action)
        else:
            fixer.run()
    except KeyboardInterrupt:
        print()
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    main()
