"""
Collector HTTP API - agent exchanges and owner-scoped read models

Agent endpoints authenticate with the pre-provisioned token in X-APP-ID.
Operator endpoints trust X-Owner-Id, set by the session-authenticating
front end that sits before this service.

Endpoints are plain `def` so store I/O and sampling run in the worker
threadpool and one slow exchange never stalls the event loop.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from sentra_agent import host
from sentra_agent.sampler import Sampler, select_sampler
from sentra_hub.commands import CommandQueue
from sentra_hub.config import CollectorSettings, build_store
from sentra_hub.errors import CollectorError, MalformedInput, Unauthenticated
from sentra_hub.heartbeat import HeartbeatProtocol, HeartbeatReport
from sentra_hub.inventory import ServiceInventory
from sentra_hub.models import Command
from sentra_hub.registry import AgentRegistry
from sentra_hub.store import Store
from sentra_log import get_logger, setup_logging

logger = get_logger(__name__)


# Agent request models
class RegisterRequest(BaseModel):
    hostname: Optional[str] = None
    os: Optional[str] = None


class DiskReport(BaseModel):
    device: Optional[str] = None
    read_kbps: float = Field(default=0, ge=0)
    write_kbps: float = Field(default=0, ge=0)


class HeartbeatRequest(BaseModel):
    cpu: Optional[float] = Field(default=None, ge=0, le=100)
    ram: Optional[float] = Field(default=None, ge=0)
    uptime: Optional[float] = Field(default=None, ge=0)
    timestamp: Optional[datetime] = None
    hostname: Optional[str] = None
    os: Optional[str] = None
    swap: Optional[float] = Field(default=None, ge=0, le=100)
    disk: Optional[DiskReport] = None


class ServicesRequest(BaseModel):
    # Entries stay untyped so one malformed item cannot fail the batch
    services: List[Any]
    timestamp: Optional[str] = None


class CommandResultRequest(BaseModel):
    id: int
    success: bool = False
    error: Optional[str] = None


# Agent response models
class CommandOut(BaseModel):
    id: int
    type: str
    service_name: str


class HeartbeatResponse(BaseModel):
    status: str = 'ok'
    updated: bool = True
    last_seen: Optional[datetime]
    commands: List[CommandOut]


# Operator models
class ClaimRequest(BaseModel):
    app_id: str


class AgentOut(BaseModel):
    id: int
    app_id: str
    hostname: Optional[str]
    os: Optional[str]
    last_seen: Optional[datetime]
    created_at: Optional[datetime]


class SampleOut(BaseModel):
    id: int
    agent_id: int
    cpu: Optional[float]
    ram: Optional[float]
    uptime: Optional[float]
    timestamp: Optional[datetime]
    swap: Optional[float] = None
    disk_device: Optional[str] = None
    disk_read_kbps: Optional[float] = None
    disk_write_kbps: Optional[float] = None
    app_id: str
    hostname: Optional[str]


class ServiceOut(BaseModel):
    agent_id: int
    service_name: str
    display_name: Optional[str]
    status: Optional[str]
    last_updated: Optional[datetime]
    app_id: str
    hostname: Optional[str]


class AgentList(BaseModel):
    success: bool = True
    data: List[AgentOut]


class SampleList(BaseModel):
    success: bool = True
    data: List[SampleOut]


class ServiceList(BaseModel):
    success: bool = True
    data: List[ServiceOut]


class CommandDetail(BaseModel):
    id: int
    agent_id: int
    service_name: str
    command_type: str
    status: str
    error_message: Optional[str]
    created_at: Optional[datetime]
    executed_at: Optional[datetime]


def _command_detail(command: Command) -> CommandDetail:
    return CommandDetail(**vars(command))


# Dependencies
def get_protocol(request: Request) -> HeartbeatProtocol:
    return request.app.state.protocol


def get_queue(request: Request) -> CommandQueue:
    return request.app.state.protocol.queue


def agent_token(x_app_id: Optional[str] = Header(default=None, alias='X-APP-ID')) -> str:
    if not x_app_id:
        raise MalformedInput("X-APP-ID header required")
    return x_app_id


def current_owner(x_owner_id: Optional[int] = Header(default=None, alias='X-Owner-Id')) -> int:
    if x_owner_id is None:
        raise Unauthenticated("Unauthorized")
    return x_owner_id


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = '.'.join(str(p) for p in error.get('loc', ()) if p != 'body')
        parts.append(f"{location}: {error.get('msg')}" if location else error.get('msg', ''))
    return '; '.join(parts) or 'Invalid request'


def create_app(
    store: Store,
    settings: Optional[CollectorSettings] = None,
    sampler: Optional[Sampler] = None
) -> FastAPI:
    """Build the collector application around an explicit store"""
    settings = settings or CollectorSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        store.close()

    app = FastAPI(
        title="Sentra Collector",
        description="Agent telemetry and command dispatch",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.store = store
    app.state.sampler = sampler
    app.state.protocol = HeartbeatProtocol(
        store,
        registry=AgentRegistry(store),
        queue=CommandQueue(store, allow_unclaimed=settings.allow_unclaimed_commands),
        inventory=ServiceInventory(store)
    )

    @app.exception_handler(CollectorError)
    async def collector_error_handler(request: Request, exc: CollectorError):
        logger.warning(
            f"Rejected request: {exc.code}",
            extra={'context': {'path': request.url.path, 'status': exc.status_code}}
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = MalformedInput(_validation_message(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", extra={'context': {'path': request.url.path}})
        return JSONResponse(
            status_code=500,
            content={'status': 'error', 'code': 'internal_error', 'error': 'Internal server error'}
        )

    # Agent exchanges

    @app.post('/api/auth/register')
    def register(
        body: RegisterRequest,
        token: str = Depends(agent_token),
        protocol: HeartbeatProtocol = Depends(get_protocol)
    ):
        """Agent start-up handshake"""
        protocol.register(token, body.hostname, body.os)
        return {'status': 'ok', 'registered': True}

    @app.post('/api/status/update', response_model=HeartbeatResponse)
    def status_update(
        body: HeartbeatRequest,
        token: str = Depends(agent_token),
        protocol: HeartbeatProtocol = Depends(get_protocol)
    ):
        """Heartbeat: store the sample, return pending commands"""
        report = HeartbeatReport(
            cpu=body.cpu,
            ram=body.ram,
            uptime=body.uptime,
            timestamp=body.timestamp,
            hostname=body.hostname,
            os=body.os,
            swap=body.swap,
            disk=body.disk.model_dump() if body.disk else {}
        )
        result = protocol.heartbeat(token, report)
        return HeartbeatResponse(
            last_seen=result.last_seen,
            commands=[
                CommandOut(id=c.id, type=c.command_type, service_name=c.service_name)
                for c in result.commands
            ]
        )

    @app.post('/api/status/services')
    def status_services(
        body: ServicesRequest,
        token: str = Depends(agent_token),
        protocol: HeartbeatProtocol = Depends(get_protocol)
    ):
        """Service inventory push"""
        result = protocol.push_services(token, body.services)
        return {
            'status': 'ok',
            'updated': True,
            'count': result.processed,
            'skipped': result.skipped,
            'timestamp': body.timestamp,
        }

    @app.post('/api/status/service-command-result')
    def service_command_result(
        body: CommandResultRequest,
        token: str = Depends(agent_token),
        protocol: HeartbeatProtocol = Depends(get_protocol)
    ):
        """Agent reports the outcome of a delivered command"""
        command, changed = protocol.report_result(token, body.id, body.success, body.error)
        return {'status': 'ok', 'updated': changed, 'command_status': command.status}

    # Operator endpoints

    @app.get('/api/agents', response_model=AgentList)
    def list_agents(
        owner_id: int = Depends(current_owner),
        protocol: HeartbeatProtocol = Depends(get_protocol)
    ):
        """Agents claimed by the caller"""
        agents = protocol.registry.agents_for_owner(owner_id)
        return AgentList(data=[AgentOut(**vars(a)) for a in agents])

    @app.post('/api/apps')
    def claim_app(
        body: ClaimRequest,
        owner_id: int = Depends(current_owner),
        protocol: HeartbeatProtocol = Depends(get_protocol)
    ):
        """Bind a pre-provisioned App ID to the caller"""
        agent = protocol.registry.claim(body.app_id, owner_id)
        return {'success': True, 'agent_id': agent.id, 'message': 'App ID registered to your account'}

    @app.get('/api/agent-status', response_model=SampleList)
    def agent_status(
        limit: Optional[int] = Query(default=None, ge=1, le=1000, description="Max samples"),
        owner_id: int = Depends(current_owner),
        protocol: HeartbeatProtocol = Depends(get_protocol)
    ):
        """Latest samples across the caller's agents"""
        rows = protocol.store.latest_samples(owner_id, limit or settings.status_limit)
        return SampleList(data=[SampleOut(**row) for row in rows])

    @app.get('/api/agent-services', response_model=ServiceList)
    def agent_services(
        owner_id: int = Depends(current_owner),
        protocol: HeartbeatProtocol = Depends(get_protocol)
    ):
        """Service inventory across the caller's agents"""
        rows = protocol.inventory.services_for_owner(owner_id)
        return ServiceList(data=[ServiceOut(**row) for row in rows])

    @app.post('/api/agent-services/{agent_id}/{service_name}/restart')
    def queue_restart(
        agent_id: int,
        service_name: str,
        owner_id: int = Depends(current_owner),
        queue: CommandQueue = Depends(get_queue)
    ):
        """Queue a restart for delivery on the agent's next heartbeat"""
        command = queue.enqueue(agent_id, service_name, owner_id)
        return {'success': True, 'command_id': command.id, 'message': 'Restart command queued'}

    @app.get('/api/commands/{command_id}', response_model=CommandDetail)
    def get_command(
        command_id: int,
        owner_id: int = Depends(current_owner),
        queue: CommandQueue = Depends(get_queue)
    ):
        return _command_detail(queue.get(command_id, owner_id))

    @app.get('/api/metrics')
    def collector_metrics(request: Request, owner_id: int = Depends(current_owner)):
        """Sample the collector's own host"""
        if request.app.state.sampler is None:
            request.app.state.sampler = select_sampler()
        sample = request.app.state.sampler.sample()
        return {
            'success': True,
            'metrics': {
                'cpu': {'usage': sample.cpu_percent},
                'memory': vars(sample.memory) if sample.memory else None,
                'swap': vars(sample.swap) if sample.swap else None,
                'disk': {
                    'device': sample.disk.device,
                    'readKBps': sample.disk.read_kbps,
                    'writeKBps': sample.disk.write_kbps,
                },
                'uptime': sample.uptime_seconds,
            },
        }

    @app.get('/api/server-info')
    def server_info(owner_id: int = Depends(current_owner)):
        return {
            'success': True,
            'hostname': host.hostname(),
            'ipAddress': host.primary_ip(),
            'osName': host.os_name(),
            'osVersion': host.os_label(),
        }

    @app.get('/health')
    def health():
        """Health check endpoint"""
        return {'status': 'healthy'}

    return app


def run_server(host_addr: str = '0.0.0.0', port: int = 4001, settings: Optional[CollectorSettings] = None):
    """Run the collector"""
    settings = settings or CollectorSettings.from_env()
    setup_logging(level=settings.log_level, service='sentra-collector')
    app = create_app(build_store(settings), settings)
    uvicorn.run(app, host=host_addr, port=port, timeout_keep_alive=5)
