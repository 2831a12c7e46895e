from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jobwatch.config import AppConfig, Settings, get_config, get_settings
from jobwatch.core.database import get_db
from jobwatch.services.analytics import ExecutionAnalytics
from jobwatch.services.bulk_retry import BulkRetryOrchestrator
from jobwatch.services.executions import ExecutionService
from jobwatch.services.queries import ExecutionQueries
from jobwatch.services.query_cache import QueryCache, get_query_cache
from jobwatch.services.retention import RetentionManager
from jobwatch.services.retry_dispatch import BaseRetryDispatcher, get_retry_dispatcher

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]
Cache = Annotated[QueryCache, Depends(get_query_cache)]
RetryDispatcher = Annotated[BaseRetryDispatcher, Depends(get_retry_dispatcher)]


def get_execution_service(db: DBSession, config: Config, cache: Cache) -> ExecutionService:
    return ExecutionService(db, config, cache)


def get_execution_queries(
    db: DBSession, settings: AppSettings, config: Config
) -> ExecutionQueries:
    return ExecutionQueries(db, settings, config)


def get_execution_analytics(db: DBSession, config: Config) -> ExecutionAnalytics:
    return ExecutionAnalytics(db, config)


def get_retention_manager(db: DBSession, config: Config, cache: Cache) -> RetentionManager:
    return RetentionManager(db, config, cache)


def get_bulk_retry(
    db: DBSession, dispatcher: RetryDispatcher, settings: AppSettings
) -> BulkRetryOrchestrator:
    return BulkRetryOrchestrator(db, dispatcher, settings)


Executions = Annotated[ExecutionService, Depends(get_execution_service)]
Queries = Annotated[ExecutionQueries, Depends(get_execution_queries)]
Analytics = Annotated[ExecutionAnalytics, Depends(get_execution_analytics)]
Retention = Annotated[RetentionManager, Depends(get_retention_manager)]
BulkRetry = Annotated[BulkRetryOrchestrator, Depends(get_bulk_retry)]
