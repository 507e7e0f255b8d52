from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])

@router.get("")
async def health(request: Request):
    store_ok = await request.app.state.records.ping()
    sweeper = request.app.state.sweeper
    return {
        "status": "ok" if store_ok else "degraded",
        "dependencies": {
            "code_store": store_ok,
            "sweeper": sweeper.running,
        },
    }

@router.get("/readiness")
async def readiness(request: Request):
    store_ok = await request.app.state.records.ping()
    status = request.app.state.dispatcher.status()
    return {"ready": store_ok, "code_store": store_ok, "providers": status}

@router.get("/liveness")
async def liveness():
    return {"alive": True}
