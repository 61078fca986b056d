import ipaddress

from starlette.types import ASGIApp, Receive, Scope, Send


def _forwarded_client(header_value: str, proxies_count: int) -> str | None:
    """Pick the client address out of ``X-Forwarded-For``.

    The header reads "client, proxy1, proxy2"; with N trusted proxies in front
    of the app the client is the entry N+1 from the right. Anything that does
    not parse as an IP address is ignored.
    """
    hops = [hop.strip() for hop in header_value.split(",") if hop.strip()]
    if len(hops) <= proxies_count:
        return None
    candidate = hops[-(proxies_count + 1)]
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


class TrustedProxiesMiddleware:
    """Rewrite ``scope["client"]`` so rate limits, lockouts and session records see the real client IP."""

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.proxies_count > 0:
            headers = dict(scope.get("headers", []))
            forwarded = headers.get(b"x-forwarded-for", b"").decode("latin-1")
            client_ip = _forwarded_client(forwarded, self.proxies_count) if forwarded else None
            if client_ip:
                port = scope["client"][1] if scope.get("client") else 0
                scope["client"] = (client_ip, port)

        await self.app(scope, receive, send)
