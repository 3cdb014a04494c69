from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roam.api import itinerary
from roam.core.config import settings

app = FastAPI(title="Roam Itinerary API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(itinerary.router)


@app.get("/")
def read_root():
    return {
        "message": "Roam itinerary engine is running.",
        "status": "healthy",
        "version": "0.1.0",
    }
