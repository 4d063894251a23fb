import platform, os, shutil, logging, re

logger = logging.getLogger(__name__)

PACKAGE_NAME_REGEX = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9._+-]*$')
FLATPAK_APP_ID_REGEX = re.compile(r'^[A-Za-z][A-Za-z0-9_-]*(\.[A-Za-z0-9_-]+)+$')

DEBIAN_FAMILY = ["debian", "ubuntu", "pop", "mint", "linuxmint", "elementary", "zorin"]
FEDORA_FAMILY = ["fedora", "rhel", "centos", "rocky", "almalinux"]
ARCH_FAMILY = ["arch", "manjaro", "endeavouros"]
SUSE_FAMILY = ["opensuse", "opensuse-leap", "opensuse-tumbleweed", "suse"]

LOCK_FILES = ["/var/lib/dpkg/lock", "/var/lib/dpkg/lock-frontend", "/var/lib/apt/lists/lock",
              "/var/lib/pacman/db.lck", "/var/run/dnf.pid", "/run/zypp.pid"]


class LinuxDistroHelper:
    def __init__(self, os_release_path="/etc/os-release"):
        info = self._detect_distro_info(os_release_path)
        self.distro_id = info["id"]
        self.distro_name = info["name"]
        self.distro_pretty_name = info["pretty_name"]

        self.pkg_install = ""
        self.pkg_remove = ""
        self.package_manager = ""

        self._setup_commands()

    @staticmethod
    def _detect_distro_info(os_release_path):
        distro_info = {"id": "unknown", "name": "", "pretty_name": ""}
        try:
            with open(os_release_path) as f:
                for line in f:
                    if line.startswith("ID="):
                        distro_info["id"] = line.strip().split("=", 1)[1].strip('"').lower()
                    elif line.startswith("NAME="):
                        distro_info["name"] = line.strip().split("=", 1)[1].strip('"')
                    elif line.startswith("PRETTY_NAME="):
                        distro_info["pretty_name"] = line.strip().split("=", 1)[1].strip('"')
        except OSError as e:
            logger.error(f"Error when reading {os_release_path}: {e}")
            distro_info["id"] = platform.system().lower()
        return distro_info

    def _setup_commands(self):
        distro = self.distro_id

        if distro in ARCH_FAMILY:
            self.package_manager = "pacman"
            self.pkg_install = "sudo pacman -S --noconfirm {package}"
            self.pkg_remove = "sudo pacman -Rns --noconfirm {package}"

        elif distro in DEBIAN_FAMILY:
            self.package_manager = "apt"
            self.pkg_install = "sudo apt-get install -y {package}"
            self.pkg_remove = "sudo apt-get remove -y {package}"

        elif distro in FEDORA_FAMILY:
            self.package_manager = "dnf"
            self.pkg_install = "sudo dnf install -y {package}"
            self.pkg_remove = "sudo dnf remove -y {package}"

        elif distro in SUSE_FAMILY:
            self.package_manager = "zypper"
            self.pkg_install = "sudo zypper install -y {package}"
            self.pkg_remove = "sudo zypper remove -y {package}"

        else:
            logger.warning(f"Unknown distribution: {distro}, native package operations are unavailable")
            self.package_manager = ""
            self.pkg_install = ""
            self.pkg_remove = ""

    @property
    def is_debian_based(self):
        return self.distro_id in DEBIAN_FAMILY

    @staticmethod
    def is_valid_package_name(package):
        if not package or not isinstance(package, str):
            return False

        package = package.strip()
        if not package or len(package) > 255:
            return False

        if not PACKAGE_NAME_REGEX.match(package):
            return False

        dangerous_chars = [';', '&', '|', '`', '$', '(', ')', '<', '>', '\n', '\r', '\t', ' ']
        return not any(char in package for char in dangerous_chars)

    @staticmethod
    def is_valid_flatpak_id(app_id):
        return bool(app_id) and isinstance(app_id, str) and len(app_id) <= 255 and bool(FLATPAK_APP_ID_REGEX.match(app_id))

    @staticmethod
    def command_exists(name):
        return shutil.which(name) is not None

    @staticmethod
    def held_lock_file(output):
        return next((lock for lock in LOCK_FILES if lock in (output or "")), None)

    def get_pkg_install_cmd(self, package):
        if not self.pkg_install:
            return []
        return self.pkg_install.format(package=package).split()

    def get_pkg_remove_cmd(self, package):
        if not self.pkg_remove:
            return []
        return self.pkg_remove.format(package=package).split()

    @staticmethod
    def get_apt_install_cmd(target):
        return ["sudo", "apt-get", "install", "-y", target]

    @staticmethod
    def get_apt_remove_cmd(package):
        return ["sudo", "apt-get", "remove", "-y", package]

    @staticmethod
    def get_snap_install_cmd(package):
        return ["sudo", "snap", "install", package]

    @staticmethod
    def get_snap_remove_cmd(package):
        return ["sudo", "snap", "remove", package]

    @staticmethod
    def get_flatpak_remote_cmd():
        return ["flatpak", "remote-add", "--user", "--if-not-exists", "flathub",
                "https://dl.flathub.org/repo/flathub.flatpakrepo"]

    @staticmethod
    def get_flatpak_install_cmd(app_id):
        return ["flatpak", "install", "--user", "-y", "--noninteractive", "flathub", app_id]

    @staticmethod
    def get_flatpak_remove_cmd(app_id):
        return ["flatpak", "uninstall", "--user", "-y", "--noninteractive", app_id]

    def describe(self):
        return self.distro_pretty_name or self.distro_name or self.distro_id or os.uname().sysname
