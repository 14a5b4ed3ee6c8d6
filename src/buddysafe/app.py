from contextlib import asynccontextmanager

from fastapi import FastAPI

from buddysafe.api.deps import provide_orchestrator
from buddysafe.api.safety import router as safety_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    orchestrator = provide_orchestrator()
    orchestrator.start()
    yield
    await orchestrator.aclose()


app = FastAPI(title="BuddySafe API", lifespan=lifespan)
app.include_router(safety_router)
