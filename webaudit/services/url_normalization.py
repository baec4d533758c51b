import re
from dataclasses import dataclass
from urllib.parse import urlparse


class UrlNormalizer:
    """Strategy interface."""
    def normalize(self, s: str) -> str:
        raise NotImplementedError

    def domain_of(self, url: str) -> str:
        return (urlparse(url).hostname or "").lower()


@dataclass(frozen=True)
class SchemeUrlNormalizer(UrlNormalizer):
    """Trims input and prepends a scheme when none is given."""
    default_scheme: str = "https"

    def normalize(self, s: str) -> str:
        s = (s or "").strip()
        if not s:
            return ""

        if re.match(r"^https?://", s, flags=re.IGNORECASE):
            return s

        # "//host/path" style input
        s = s.lstrip("/")
        return f"{self.default_scheme}://" + s
