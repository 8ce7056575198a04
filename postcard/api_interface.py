"""
HTTP Interface Layer using FastAPI: enrichment webhook, RAG query and entry endpoints.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Optional

import uvicorn
from fastapi import APIRouter, BackgroundTasks, Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from .services.enrichment import EnrichmentService
from .services.entry_management import EntryManagementError, EntryManagementService
from .services.query import InvalidQueryError, QueryError, QueryService
from .utils.config import config, require_config
from .utils.health_check import all_healthy, get_health_status
from .utils.logging_config import get_logger
from .utils.neptune_client import NeptuneClient
from .utils.opensearch_client import OpenSearchClient, OpenSearchError

logger = get_logger(__name__)


class QueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias='userId')
    match_threshold: Optional[float] = Field(default=None, alias='matchThreshold', ge=0.0, le=1.0)
    match_count: Optional[int] = Field(default=None, alias='matchCount', ge=1, le=50)


class EntryCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias='userId')
    raw_text: str = Field(default='', alias='rawText')


@lru_cache()
def get_entry_store() -> OpenSearchClient:
    return OpenSearchClient(config.opensearch)


@lru_cache()
def get_graph() -> NeptuneClient:
    return NeptuneClient(config.neptune)


@lru_cache()
def get_enrichment_service() -> EnrichmentService:
    return EnrichmentService(entry_store=get_entry_store(), graph=get_graph())


@lru_cache()
def get_query_service() -> QueryService:
    return QueryService(entry_store=get_entry_store())


@lru_cache()
def get_entry_service() -> EntryManagementService:
    return EntryManagementService(entry_store=get_entry_store(), graph=get_graph())


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({'error': message}, status_code=status_code)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Refuse to start without store endpoints and credentials
    require_config()
    try:
        get_entry_store().create_index_if_not_exists()
    except OpenSearchError as e:
        logger.warning(f'Failed to create OpenSearch index: {e}')

    yield

    if get_graph.cache_info().currsize:
        get_graph().close()


router = APIRouter(prefix='/api')


@router.post('/webhook')
def process_entry_webhook(payload: Any = Body(default=None),
                          service: EnrichmentService = Depends(get_enrichment_service)) -> JSONResponse:
    """Enrichment trigger: `{"record": {"id": ...}}` or `{"id": ...}`."""
    try:
        result = service.process_payload(payload)
    except Exception as e:
        logger.error(f'Unhandled error in webhook handler: {e}')
        return error_response(str(e) or 'Internal Server Error', 500)

    return JSONResponse(result.to_response(), status_code=result.status_code)


@router.post('/query')
def query_entries(request: Optional[QueryRequest] = Body(default=None),
                  service: QueryService = Depends(get_query_service)) -> JSONResponse:
    """Answer a question from the requesting user's entries."""
    if request is None:
        return error_response('Missing query or userId', 400)

    try:
        answer = service.answer(request.query, request.user_id, request.match_threshold, request.match_count)
    except InvalidQueryError as e:
        return error_response(str(e), 400)
    except QueryError as e:
        return error_response(str(e), 500)

    return JSONResponse({'answer': answer})


@router.post('/entries', status_code=201)
def create_entry(request: EntryCreateRequest,
                 background_tasks: BackgroundTasks,
                 service: EntryManagementService = Depends(get_entry_service),
                 enrichment: EnrichmentService = Depends(get_enrichment_service)) -> JSONResponse:
    """Store a new entry and schedule its enrichment."""
    if not request.user_id or not request.user_id.strip():
        return error_response('Missing userId', 400)

    entry = service.create_entry(request.user_id, request.raw_text)
    background_tasks.add_task(enrichment.process_entry, entry.id, entry)
    return JSONResponse({'entry': entry.to_response()}, status_code=201)


@router.get('/entries')
def list_entries(user_id: Optional[str] = Query(default=None, alias='userId'),
                 limit: int = Query(default=50, ge=1, le=500),
                 service: EntryManagementService = Depends(get_entry_service)) -> JSONResponse:
    if not user_id:
        return error_response('Missing userId', 400)

    entries = service.list_entries(user_id, limit)
    return JSONResponse({'entries': [entry.to_response() for entry in entries]})


@router.get('/entries/{entry_id}')
def get_entry(entry_id: str,
              user_id: Optional[str] = Query(default=None, alias='userId'),
              service: EntryManagementService = Depends(get_entry_service)) -> JSONResponse:
    if not user_id:
        return error_response('Missing userId', 400)

    found = service.get_entry(entry_id, user_id)
    if found is None:
        return error_response(f'Entry {entry_id} not found', 404)

    entry, entities = found
    return JSONResponse({
        'entry': entry.to_response(),
        'entities': [{
            'id': entity.id,
            'name': entity.name,
            'type': entity.type
        } for entity in entities]
    })


@router.delete('/entries/{entry_id}')
def delete_entry(entry_id: str,
                 user_id: Optional[str] = Query(default=None, alias='userId'),
                 service: EntryManagementService = Depends(get_entry_service)) -> JSONResponse:
    if not user_id:
        return error_response('Missing userId', 400)

    if not service.delete_entry(entry_id, user_id):
        return error_response(f'Entry {entry_id} not found', 404)
    return JSONResponse({'success': True, 'entryId': entry_id})


async def entry_management_error_handler(request: Request, exc: EntryManagementError) -> JSONResponse:
    return error_response(str(exc), 500)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed JSON and wrongly typed fields are client errors like missing ones
    logger.warning(f'Rejected {request.method} {request.url.path}: {exc.errors()}')
    return error_response('Invalid request', 400)


def create_app() -> FastAPI:
    app = FastAPI(title='Postcard Backend',
                  description='Journal entry enrichment and retrieval-augmented search',
                  version='1.0.0',
                  lifespan=lifespan)

    app.add_middleware(CORSMiddleware,
                       allow_origins=config.api.cors_origins,
                       allow_credentials=False,
                       allow_methods=['*'],
                       allow_headers=['*'])

    @app.get('/', response_class=PlainTextResponse)
    def root() -> str:
        return 'Postcard Backend AI Processor is running.'

    @app.get('/health')
    def health() -> JSONResponse:
        status = get_health_status()
        healthy = all_healthy(status)
        return JSONResponse({'healthy': healthy, 'components': status}, status_code=200 if healthy else 503)

    app.include_router(router)
    app.add_exception_handler(EntryManagementError, entry_management_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    return app


app = create_app()


if __name__ == '__main__':
    uvicorn.run(app, host=config.api.host, port=config.api.port)
