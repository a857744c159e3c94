from fastapi import APIRouter

from intake.api.routes import health, ingest, jobs, records, scrape_requests, text_requests

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(scrape_requests.router, prefix="/scrape-requests", tags=["submissions"])
api_router.include_router(text_requests.router, prefix="/text-requests", tags=["submissions"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(ingest.router, tags=["ingest"])
api_router.include_router(records.router, prefix="/records", tags=["records"])
