"""Tracking privacy rules: paused tracking, excluded apps, URL whitelist."""

from urllib.parse import urlparse

from toki.db.models import UserSettings


class PrivacyFilter:
    """Applies the user's privacy settings to samples before they are stored."""

    def __init__(self, settings: UserSettings) -> None:
        self.settings = settings

    @property
    def is_tracking_paused(self) -> bool:
        return self.settings.pause_tracking

    def should_exclude_app(self, app_bundle_id: str) -> bool:
        """Excluded when an entry and the app id contain one another."""
        app = app_bundle_id.lower()
        for excluded in self.settings.excluded_apps or []:
            entry = excluded.strip().lower()
            if entry and (entry in app or app in entry):
                return True
        return False

    def window_title(self, title: str | None) -> str | None:
        """The title to record, or None when title capture is off."""
        if not self.settings.capture_window_title:
            return None
        return title

    def is_url_allowed(self, url: str) -> bool:
        """Whitelisted when the host equals or is a subdomain of a whitelist entry."""
        if not self.settings.capture_browser_url:
            return False
        host = (urlparse(url if "://" in url else f"https://{url}").hostname or "").lower()
        if not host:
            return False
        for entry in self.settings.url_whitelist or []:
            domain = entry.strip().lower()
            if domain and (host == domain or host.endswith(f".{domain}")):
                return True
        return False

    def filter_urls(self, urls: list[str]) -> list[str]:
        return [url for url in urls if self.is_url_allowed(url)]
