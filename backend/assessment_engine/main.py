from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assessment_engine.api.v1.router import api_router
from assessment_engine.core.config import settings
from assessment_engine.core.errors import AttemptEngineError


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info('Assessment attempt engine starting (env=%s)', settings.APP_ENV)
    yield
    logger.info('Assessment attempt engine stopped')


app = FastAPI(
    title='LMS Assessment Attempt Engine',
    version='0.1.0',
    openapi_url='/api/v1/openapi.json',
    docs_url='/api/v1/docs',
    redoc_url='/api/v1/redoc',
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.exception_handler(AttemptEngineError)
async def attempt_engine_error_handler(request: Request, exc: AttemptEngineError) -> JSONResponse:
    logger.debug('%s %s rejected: %s (%s)', request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content={'detail': exc.message, 'code': exc.code})


app.include_router(api_router, prefix='/api/v1')


@app.get('/')
def root() -> dict[str, str]:
    return {'service': 'assessment-attempt-engine', 'status': 'running'}
