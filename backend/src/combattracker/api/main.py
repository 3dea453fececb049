from contextlib import asynccontextmanager

from fastapi import FastAPI

from combattracker.api.routers.combatants import router as combatants_router
from combattracker.api.routers.encounter_runtime import router as encounter_runtime_router
from combattracker.api.routers.encounters import router as encounters_router
from combattracker.config import configure_logging
from combattracker.db.init_db import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(title="Combat Tracker", lifespan=lifespan)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(encounters_router)
app.include_router(encounter_runtime_router)
app.include_router(combatants_router)
