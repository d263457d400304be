import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlparse

from . import conf

IMAGE_EXTENSION_RE = re.compile(r'\.(jpg|jpeg|png|gif|webp)(\?.*)?$', re.IGNORECASE)


class TemplateImageProxy:
    """
    Rewrites image URLs through a fetch proxy that serves them with an image
    content type. Only builds the URL; the proxy service does the fetching.
    """

    def __init__(self, template: Optional[str] = None):
        self._template = template or conf.image_proxy_url()

    def rewrite(self, url: str) -> str:
        # Same escaping as JavaScript's encodeURIComponent.
        return self._template.format(url=quote(url, safe="!~*'()"))


@dataclass(frozen=True)
class ImagePolicy:
    """Which image URLs a platform accepts as-is."""

    needs_extension: bool = False
    trusted_hosts: tuple = ()

    def requires_proxy(self, url: str) -> bool:
        if not self.needs_extension or not url:
            return False
        if IMAGE_EXTENSION_RE.search(url):
            return False
        host = (urlparse(url).hostname or '').lower()
        return not any(host == trusted or host.endswith('.' + trusted) for trusted in self.trusted_hosts)


ACCEPT_ANY = ImagePolicy()
EXTENSION_REQUIRED = ImagePolicy(needs_extension=True, trusted_hosts=('cdn.shopify.com', 'cloudinary.com'))
