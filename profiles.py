import random
from pathlib import Path


class ProfileManager:
    """Lists browser profile copies kept under one directory.

    Each sub-directory is a profile usable as a persistent user-data dir. A
    missing directory just means no profiles, so sessions stay ephemeral.
    """

    def __init__(self, profiles_dir: str, logger, rng: random.Random | None = None):
        self.base = Path(profiles_dir)
        self.logger = logger
        self.rng = rng or random.Random()

    def list_profiles(self) -> list[dict]:
        if not self.base.is_dir():
            return []
        profiles = []
        for entry in sorted(self.base.iterdir()):
            if not entry.is_dir():
                continue
            profiles.append({
                "path": str(entry),
                "name": entry.name,
                "modified": entry.stat().st_mtime,
                "has_cookies": (entry / "Cookies").exists() or (entry / "Network" / "Cookies").exists(),
            })
        return profiles

    def get_random_profile(self) -> str | None:
        profiles = self.list_profiles()
        if not profiles:
            self.logger.info("[SESSION] no browser profiles, using a temporary one")
            return None
        choice = self.rng.choice(profiles)["path"]
        self.logger.info(f"[SESSION] using profile {choice}")
        return choice
