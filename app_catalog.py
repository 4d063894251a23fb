from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, Iterator, Mapping, Optional, Tuple
import logging

from installer_errors import NotFoundError

logger = logging.getLogger(__name__)


class InstallMethod:
    APT     = "apt"
    SNAP    = "snap"
    FLATPAK = "flatpak"
    DEB     = "deb"
    NATIVE  = "native"

    ALL = (APT, SNAP, FLATPAK, DEB, NATIVE)


@dataclass(frozen=True)
class App:
    name: str
    group: str
    description: str
    method: str
    source: str

    def is_valid(self) -> bool:
        return bool(self.name.strip() and self.method.strip() and self.source.strip())


DEFAULT_APPS: Dict[str, App] = {
    "vscode":     App("Visual Studio Code", "development", "Code editor", InstallMethod.DEB,
                      "https://code.visualstudio.com/sha/download?build=stable&os=linux-deb-x64"),
    "zed":        App("Zed", "development", "Lightning-fast editor", InstallMethod.FLATPAK, "dev.zed.Zed"),
    "rubymine":   App("RubyMine", "development", "Ruby IDE", InstallMethod.FLATPAK, "com.jetbrains.RubyMine"),
    "git":        App("Git", "development", "Distributed version control", InstallMethod.APT, "git"),
    "neovim":     App("Neovim", "development", "Hyperextensible text editor", InstallMethod.APT, "neovim"),
    "chrome":     App("Google Chrome", "browsers", "Web browser", InstallMethod.DEB,
                      "https://dl.google.com/linux/direct/google-chrome-stable_current_amd64.deb"),
    "brave":      App("Brave", "browsers", "Privacy-focused browser", InstallMethod.DEB,
                      "https://brave-browser-apt-release.s3.brave.com/brave-browser_amd64.deb"),
    "firefox":    App("Firefox", "browsers", "Web browser", InstallMethod.SNAP, "firefox"),
    "vlc":        App("VLC", "media", "Media player", InstallMethod.APT, "vlc"),
    "spotify":    App("Spotify", "media", "Music streaming", InstallMethod.FLATPAK, "com.spotify.Client"),
    "obs-studio": App("OBS Studio", "media", "Screen recording and streaming", InstallMethod.FLATPAK,
                      "com.obsproject.Studio"),
    "gimp":       App("GIMP", "media", "Image editor", InstallMethod.FLATPAK, "org.gimp.GIMP"),
    "signal":     App("Signal", "communication", "Private messenger", InstallMethod.FLATPAK,
                      "org.signal.Signal"),
    "htop":       App("htop", "system", "Interactive process viewer", InstallMethod.NATIVE, "htop"),
    "btop":       App("btop", "system", "Resource monitor", InstallMethod.NATIVE, "btop"),
}


class AppCatalog:
    def __init__(self, apps: Optional[Mapping[str, App]] = None):
        self._apps: Dict[str, App] = dict(DEFAULT_APPS if apps is None else apps)

    @classmethod
    def from_config(cls, overrides) -> "AppCatalog":
        catalog = cls()
        if not isinstance(overrides, dict):
            return catalog
        for key, data in overrides.items():
            if not isinstance(data, dict):
                logger.warning(f"Ignoring catalog entry '{key}': expected dictionary")
                continue
            base = catalog._apps.get(key)
            try:
                app = replace(base, **{k: str(v) for k, v in data.items() if k in App.__dataclass_fields__}) if base \
                    else App(str(data.get("name", key)), str(data.get("group", "custom")),
                             str(data.get("description", "")), str(data["method"]), str(data["source"]))
            except KeyError as e:
                logger.warning(f"Ignoring catalog entry '{key}': missing field {e}")
                continue
            if not app.is_valid():
                logger.warning(f"Ignoring catalog entry '{key}': name, method and source must not be empty")
                continue
            if app.method not in InstallMethod.ALL:
                logger.warning(f"Ignoring catalog entry '{key}': unsupported method '{app.method}'")
                continue
            catalog._apps[key] = app
        return catalog

    def lookup(self, key: str) -> Tuple[str, str, str, str, str, bool]:
        app = self._apps.get(key)
        if app is None:
            return "", "", "", "", "", False
        return app.name, app.group, app.description, app.method, app.source, True

    def get(self, key: str) -> App:
        try:
            return self._apps[key]
        except KeyError:
            raise NotFoundError(key) from None

    def display_name(self, key: str) -> str:
        app = self._apps.get(key)
        return app.name if app else key

    def keys(self):
        return self._apps.keys()

    def group(self, group: str) -> list[str]:
        return sorted(k for k, app in self._apps.items() if app.group == group)

    def __contains__(self, key) -> bool:
        return key in self._apps

    def __iter__(self) -> Iterator[str]:
        return iter(self._apps)

    def __len__(self) -> int:
        return len(self._apps)
