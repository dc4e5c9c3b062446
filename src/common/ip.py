from fastapi import Request


def client_ip(request: Request) -> str:
    """Best-effort client address: first X-Forwarded-For hop, then X-Real-IP, then the socket peer"""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"
