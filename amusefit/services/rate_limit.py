from __future__ import annotations
from fastapi import HTTPException, Request, status
from ..repos.code_records import RecordStore

# ---- generic token counter (fixed window) ----
async def _hit(store: RecordStore, key: str, window_sec: int, limit: int) -> None:
    count, ttl = await store.hit(key, window_sec)
    if count > limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="요청이 너무 많습니다. 잠시 후 다시 시도해주세요.",
            headers={"Retry-After": str(max(ttl, 1))},
        )

def _client_ip(req: Request) -> str:
    peer = req.client.host if req.client else "unknown"
    trusted = set(req.app.state.settings.TRUSTED_PROXY_IPS)
    if peer not in trusted:
        # X-Forwarded-For is client-controlled unless our own proxy wrote it
        return peer
    hops = [h.strip() for h in req.headers.get("x-forwarded-for", "").split(",") if h.strip()]
    # proxies append, so the nearest untrusted hop is the real client
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer

# ---- public helpers ----
async def limit_code_request(req: Request) -> None:
    ip = _client_ip(req)
    limit = req.app.state.settings.RL_CODE_REQ_PER_IP_10S
    await _hit(req.app.state.records, f"rl:code:req:ip:{ip}", window_sec=10, limit=limit)

async def limit_code_verify(req: Request) -> None:
    ip = _client_ip(req)
    limit = req.app.state.settings.RL_CODE_VERIFY_PER_IP_10S
    await _hit(req.app.state.records, f"rl:code:verify:ip:{ip}", window_sec=10, limit=limit)
