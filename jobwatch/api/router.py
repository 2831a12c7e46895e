from fastapi import APIRouter

from jobwatch.api.analytics import router as analytics_router
from jobwatch.api.executions import router as executions_router
from jobwatch.api.maintenance import router as maintenance_router

PREFIX = "/api/job-executions"

api_router = APIRouter()

# Fixed paths must be registered before /{execution_id}
api_router.include_router(maintenance_router, prefix=PREFIX, tags=["maintenance"])
api_router.include_router(analytics_router, prefix=PREFIX, tags=["analytics"])
api_router.include_router(executions_router, prefix=PREFIX, tags=["executions"])
