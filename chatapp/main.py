import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger.json import JsonFormatter
from sqlalchemy.exc import DBAPIError, IntegrityError

from .config import settings
from .core import redis_startup, init_metrics, shutdown_connections
from .errors import ChatError
from .realtime import feed
from .routes import router

# setup structured logging
logger = logging.getLogger('chatapp')
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
    logger.addHandler(handler)
logger.setLevel(settings.log_level)

app = FastAPI(title="Chat API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(router, prefix="/api")


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content={'detail': exc.detail}, headers=exc.headers)


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.info({'msg': 'integrity_error', 'path': request.url.path, 'error': str(exc.orig)})
    return JSONResponse(status_code=409, content={'detail': 'Conflicts with an existing row'})


@app.exception_handler(DBAPIError)
async def store_error_handler(request: Request, exc: DBAPIError):
    # connection-level failures are not the caller's fault; keep them apart from policy denials
    logger.error({'msg': 'store_unavailable', 'path': request.url.path, 'error': str(exc.orig)})
    return JSONResponse(status_code=503, content={'detail': 'Data store unavailable'})


@app.get('/healthz')
async def healthz():
    return {'status': 'ok'}


@app.middleware('http')
async def log_requests(request: Request, call_next):
    logger.info({'msg': 'request_start', 'method': request.method, 'path': request.url.path})
    response = await call_next(request)
    logger.info({'msg': 'request_end', 'status': response.status_code})
    return response


@app.on_event("startup")
async def startup():
    # Best-effort init, don't block app from starting if a dependency fails
    try:
        await redis_startup()
        await feed.start_redis_listener()
    except Exception as e:
        logger.warning({'msg': 'redis_start_failed', 'error': str(e)})
    try:
        init_metrics()
    except Exception as e:
        logger.warning({'msg': 'metrics_init_failed', 'error': str(e)})


@app.on_event("shutdown")
async def shutdown():
    await feed.stop()
    await shutdown_connections()
