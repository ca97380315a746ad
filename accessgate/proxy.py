"""Connection link construction from static proxy configuration."""

from dataclasses import dataclass
from typing import Optional

from accessgate.config import get_config_value
from accessgate.errors import ProxyUnavailable

DEFAULT_LINK_FORMAT = "https://t.me/proxy?server={server}&port={port}&secret={secret}"


@dataclass(frozen=True)
class ProxyLinks:
    turbo_url: str
    stable_url: str


def build_proxy_links(
    server: str,
    port: str,
    stable_port: str,
    secret: Optional[str],
    link_format: str = DEFAULT_LINK_FORMAT,
) -> ProxyLinks:
    """
    Build the TURBO and STABLE links.

    Raises:
        ProxyUnavailable: no secret is configured
    """
    if not secret or not server:
        raise ProxyUnavailable("proxy secret or server not configured")
    return ProxyLinks(
        turbo_url=link_format.format(server=server, port=port, secret=secret),
        stable_url=link_format.format(server=server, port=stable_port, secret=secret),
    )


def links_from_config() -> ProxyLinks:
    return build_proxy_links(
        server=str(get_config_value("proxy.server", "") or ""),
        port=str(get_config_value("proxy.port", "443")),
        stable_port=str(get_config_value("proxy.stable_port", "443")),
        secret=get_config_value("proxy.secret"),
        link_format=get_config_value("proxy.link_format") or DEFAULT_LINK_FORMAT,
    )
