import os
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .routes import router
from .auth import SECRET, DEV_SECRET
from .core import init_metrics, shutdown_connections, AUTH_REJECTIONS
from .errors import AuthError, LOGIN_FAILED_MESSAGE
import logging
from pythonjsonlogger import jsonlogger

# setup structured logging
logger = logging.getLogger('eventpass')
handler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s')
handler.setFormatter(formatter)
logger.addHandler(handler)
logger.setLevel(os.getenv('LOG_LEVEL', 'INFO').upper())

app = FastAPI(title="EventPass Auth API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv('CORS_ALLOW_ORIGINS', '*').split(',') if o.strip()],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(router, prefix="/api")


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    # internal kind goes to logs and metrics only, the client sees the safe message
    event = {'msg': 'auth_rejected', 'kind': exc.kind, 'status': exc.status_code, 'path': request.url.path}
    reason = getattr(exc, 'reason', None)
    if reason:
        event['reason'] = reason
    if exc.status_code >= 500:
        logger.error(event)
    else:
        logger.info(event)
    AUTH_REJECTIONS.labels(kind=exc.kind).inc()
    return JSONResponse(status_code=exc.status_code, content={'message': exc.public_message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # submitted values are never echoed back, only field locations and messages
    details = [
        {'field': '.'.join(str(p) for p in err.get('loc', ())[1:]), 'message': err.get('msg', '')}
        for err in exc.errors()
    ]
    if request.url.path == app.url_path_for('login'):
        logger.info({'msg': 'auth_rejected', 'kind': 'InvalidCredentials', 'reason': 'validation', 'path': request.url.path})
        AUTH_REJECTIONS.labels(kind='InvalidCredentials').inc()
        return JSONResponse(status_code=401, content={'message': LOGIN_FAILED_MESSAGE})
    logger.info({'msg': 'validation_failed', 'path': request.url.path, 'fields': [d['field'] for d in details]})
    return JSONResponse(status_code=400, content={'message': 'Validation error', 'details': details})


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
    if SECRET == DEV_SECRET:
        logger.warning({'msg': 'dev_secret_in_use', 'hint': 'set JWT_SECRET for production'})
    # Best-effort init, don't block app from starting if metrics fail
    try:
        init_metrics()
    except Exception as e:
        logger.warning({'msg': 'metrics_init_failed', 'error': str(e)})


@app.on_event("shutdown")
async def shutdown():
    await shutdown_connections()
