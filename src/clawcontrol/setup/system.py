"""Base system recipes: swap, packages, Node.js toolchain and Chrome."""

from __future__ import annotations

from ..ssh import SSHSession
from .common import APT_ENV, NVM_PREFIX, Reporter, StepError, exec_or_fail, report

SWAP_FILE = "/swapfile"
SWAP_SIZE = "4G"
SWAPPINESS = "vm.swappiness=100"
FSTAB_ENTRY = f"{SWAP_FILE} none swap sw 0 0"
SWAP_PERSISTED_CHECK = f"grep -q '^{FSTAB_ENTRY}' /etc/fstab && grep -q '^{SWAPPINESS}' /etc/sysctl.conf"
NVM_VERSION = "v0.40.1"
CHROME_DEB_URL = "https://dl.google.com/linux/direct/google-chrome-stable_current_amd64.deb"


def setup_swap(session: SSHSession, reporter: Reporter = None) -> None:
    """Create a permanent 4G swap file; small servers run out of memory otherwise.

    Activation and persistence are checked separately so a run interrupted
    after ``swapon`` still writes the fstab and sysctl entries.
    """
    active = SWAP_FILE in session.exec("swapon --show").stdout
    persisted = session.exec(SWAP_PERSISTED_CHECK).ok
    if active and persisted:
        report(reporter, "Swap already configured")
        return

    steps = []
    if not active:
        steps += [
            ("Allocating swap file...", f"fallocate -l {SWAP_SIZE} {SWAP_FILE}"),
            ("Securing swap file...", f"chmod 600 {SWAP_FILE}"),
            ("Formatting swap area...", f"mkswap {SWAP_FILE}"),
            ("Enabling swap...", f"swapon {SWAP_FILE}"),
        ]
    steps += [
        ("Persisting swap in fstab...", f"grep -q '^{FSTAB_ENTRY}' /etc/fstab || echo '{FSTAB_ENTRY}' >> /etc/fstab"),
        ("Tuning swappiness...", f"sysctl {SWAPPINESS}"),
        (None, f"grep -q '^{SWAPPINESS}' /etc/sysctl.conf || echo '{SWAPPINESS}' >> /etc/sysctl.conf"),
    ]
    for message, command in steps:
        if message:
            report(reporter, message)
        exec_or_fail(session, command, "Failed to setup swap")

    verify = session.exec("free -h | grep -i swap")
    if "4.0G" not in verify.stdout and "4G" not in verify.stdout:
        raise StepError("Swap verification failed", verify)


def update_system(session: SSHSession, reporter: Reporter = None) -> None:
    report(reporter, "Updating package lists...")
    exec_or_fail(session, f"{APT_ENV} apt-get update", "Failed to update package lists")
    report(reporter, "Upgrading packages...")
    exec_or_fail(session, f"{APT_ENV} apt-get upgrade -y", "Failed to upgrade packages")
    report(reporter, "Installing essential packages...")
    exec_or_fail(
        session,
        f"{APT_ENV} apt-get install -y curl wget git build-essential",
        "Failed to install essential packages",
    )


def install_nvm(session: SSHSession, reporter: Reporter = None) -> None:
    check = session.exec("source ~/.nvm/nvm.sh 2>/dev/null && nvm --version")
    if check.ok and check.stdout.strip():
        report(reporter, "NVM already installed")
        return

    report(reporter, f"Installing NVM {NVM_VERSION}...")
    exec_or_fail(
        session,
        f"curl -o- https://raw.githubusercontent.com/nvm-sh/nvm/{NVM_VERSION}/install.sh | bash",
        "Failed to install NVM",
    )

    # the installer normally does this itself; keep login shells working if it did not
    session.exec(
        "if ! grep -q 'NVM_DIR' ~/.bashrc; then\n"
        "  echo 'export NVM_DIR=\"$HOME/.nvm\"' >> ~/.bashrc\n"
        "  echo '[ -s \"$NVM_DIR/nvm.sh\" ] && . \"$NVM_DIR/nvm.sh\"' >> ~/.bashrc\n"
        "fi"
    )

    verify = session.exec("source ~/.nvm/nvm.sh && nvm --version")
    if not verify.ok:
        raise StepError("NVM installation verification failed", verify)


def install_node(session: SSHSession, reporter: Reporter = None) -> None:
    check = session.exec(f"{NVM_PREFIX} node --version")
    if check.ok and "v" in check.stdout:
        report(reporter, f"Node.js {check.stdout.strip()} already installed")
        return

    report(reporter, "Installing Node.js LTS...")
    exec_or_fail(session, f"{NVM_PREFIX} nvm install --lts", "Failed to install Node.js LTS")
    exec_or_fail(
        session, f"{NVM_PREFIX} nvm alias default 'lts/*'", "Failed to set default Node.js version"
    )

    verify = session.exec(f"{NVM_PREFIX} node --version")
    if not verify.ok or "v" not in verify.stdout:
        raise StepError("Node.js installation verification failed", verify)


def install_pnpm(session: SSHSession, reporter: Reporter = None) -> None:
    check = session.exec(f"{NVM_PREFIX} pnpm --version")
    if check.ok and check.stdout.strip():
        report(reporter, "pnpm already installed")
        return

    report(reporter, "Installing pnpm...")
    exec_or_fail(session, f"{NVM_PREFIX} npm install -g pnpm", "Failed to install pnpm")

    verify = session.exec(f"{NVM_PREFIX} pnpm --version")
    if not verify.ok:
        raise StepError("pnpm installation verification failed", verify)


def install_chrome(session: SSHSession, reporter: Reporter = None) -> None:
    """Install Google Chrome stable, used headless by the agent's browser tool."""
    check = session.exec("which google-chrome")
    if check.ok and "google-chrome" in check.stdout:
        report(reporter, "Google Chrome already installed")
        return

    report(reporter, "Downloading Google Chrome...")
    exec_or_fail(
        session,
        f"wget -q {CHROME_DEB_URL} -O /tmp/chrome.deb",
        "Failed to download Google Chrome",
    )
    report(reporter, "Installing Google Chrome...")
    exec_or_fail(
        session, f"{APT_ENV} apt-get install -y /tmp/chrome.deb", "Failed to install Google Chrome"
    )
    # best effort
    session.exec("rm -f /tmp/chrome.deb")

    verify = session.exec("google-chrome --version")
    if not verify.ok:
        raise StepError("Google Chrome installation verification failed", verify)
