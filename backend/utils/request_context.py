from starlette.requests import Request

DEFAULT_CLIENT_IP = "127.0.0.1"
# Width of the ip_address column (IPv6 text form)
MAX_IP_LENGTH = 45

BROWSERS = (
    ("chrome", "Chrome"),
    ("firefox", "Firefox"),
    ("safari", "Safari"),
    ("edge", "Edge"),
    ("opera", "Opera"),
)


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first[:MAX_IP_LENGTH]
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = (request.headers.get(header) or "").strip()
        if value:
            return value[:MAX_IP_LENGTH]
    if request.client and request.client.host:
        return request.client.host
    return DEFAULT_CLIENT_IP


def get_device_type(user_agent: str) -> str:
    ua = (user_agent or "").lower()
    if "tablet" in ua or "ipad" in ua:
        return "tablet"
    if "mobile" in ua or "android" in ua or "iphone" in ua:
        return "mobile"
    return "desktop"


def get_browser_name(user_agent: str) -> str:
    # Order matters: most browsers also advertise "safari"
    ua = (user_agent or "").lower()
    for needle, name in BROWSERS:
        if needle in ua:
            return name
    return "Unknown"
