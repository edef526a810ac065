"""
HTTP 服务

路由：
    POST /alert     Alertmanager webhook
    GET  /          首页
    GET  /config    脱敏后的配置
    GET  /healthz   健康检查
    GET  /metrics   Prometheus 指标
"""
import html
import json
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from . import __version__
from .adapters.alertmanager_adapter import parse
from .azure.client import WorkItemClient, clear_session
from .core.config import Config
from .core.errors import AuthError, NotifyError, RemoteCallError
from .core.logging_config import get_logger
from .core.metrics import CONTENT_TYPE_LATEST, record_request, render_metrics
from .core.models import ReceiverConfig
from .services.receiver_service import ReceiverService, build_client
from .templates.template_renderer import TemplateRenderer

logger = get_logger()

ClientFactory = Callable[[ReceiverConfig], WorkItemClient]

# 未匹配到接收器的请求统一记在该标签下
UNKNOWN_RECEIVER = "<unknown>"

_HOME_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>alert-az-do</title></head>
<body>
<h1>alert-az-do</h1>
<p>Alertmanager webhook receiver for Azure DevOps work items (version {version}).</p>
<ul>
<li><a href="/config">Configuration</a></li>
<li><a href="/metrics">Metrics</a></li>
<li><a href="/healthz">Health</a></li>
</ul>
<p>Receivers: {receivers}</p>
</body>
</html>
"""


def error_response(status: int, message: str, receiver: str = UNKNOWN_RECEIVER) -> JSONResponse:
    """统一错误响应，并记录请求指标"""
    record_request(receiver, status)
    return JSONResponse(
        status_code=status,
        content={"Error": True, "Status": status, "Message": message},
    )


def create_app(config: Config, renderer: Optional[TemplateRenderer] = None,
               client_factory: Optional[ClientFactory] = None) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        config: 已校验的配置
        renderer: 模板渲染器，默认按 config.template 创建
        client_factory: 接收器配置 -> 工作项客户端，默认使用 Azure DevOps REST 客户端

    Returns:
        FastAPI: 应用实例
    """
    if renderer is None:
        renderer = TemplateRenderer(config.template)
    if client_factory is None:
        client_factory = build_client

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        """
        应用生命周期管理
        """
        server_config = config.server or {}
        logger.info("=" * 60)
        logger.info(f"alert-az-do {__version__} 服务启动")
        logger.info(f"监听地址: {server_config.get('host')}:{server_config.get('port')}")
        logger.info(f"已加载接收器: {', '.join(rc.name for rc in config.receivers)}")
        logger.info("=" * 60)

        yield

        logger.info("=" * 60)
        logger.info("alert-az-do 服务正在关闭...")
        clear_session()
        logger.info("alert-az-do 服务已关闭")
        logger.info("=" * 60)

    app = FastAPI(lifespan=lifespan, redirect_slashes=False)
    app.state.config = config

    @app.post("/alert")
    async def alert(req: Request):
        """接收 Alertmanager webhook 并协调工作项（请使用 /alert 无尾斜杠，避免 307）"""
        request_id = str(uuid.uuid4())[:8]
        raw = await req.body()
        try:
            payload = json.loads(raw)
            data = parse(payload)
        except ValueError as e:
            logger.warning(f"[{request_id}] 无法解析 webhook 请求体: {e}")
            return error_response(400, str(e))

        logger.debug(f"[{request_id}] 接收到的完整 Webhook 数据:\n{json.dumps(payload, ensure_ascii=False, indent=2)}")
        logger.info(
            f"[{request_id}] Webhook 收到 (receiver={data.receiver}, status={data.status}, "
            f"alerts={len(data.alerts)}, groupKey={data.groupKey})"
        )

        conf = config.receiver_by_name(data.receiver)
        if conf is None:
            logger.warning(f"[{request_id}] 接收器不存在: {data.receiver}")
            return error_response(404, f"Receiver missing: {data.receiver}")

        try:
            client = await run_in_threadpool(client_factory, conf)
        except (AuthError, RemoteCallError) as e:
            logger.error(f"[{request_id}] 接收器 {conf.name} 认证失败: {e}")
            return error_response(500, str(e), conf.name)

        service = ReceiverService(conf, renderer, client)
        try:
            action = await run_in_threadpool(service.notify, data)
        except NotifyError as e:
            # 4xx：同样的通知重试也会以同样的方式失败，Alertmanager 不再重试
            logger.error(f"[{request_id}] 接收器 {conf.name} 处理失败: {e}")
            return error_response(400, str(e), conf.name)
        except Exception as e:
            logger.error(f"[{request_id}] 接收器 {conf.name} 处理异常: {e}", exc_info=True)
            return error_response(500, str(e), conf.name)

        logger.info(f"[{request_id}] 接收器 {conf.name} 处理完成: {action}")
        record_request(conf.name, 200)
        return {"ok": True, "receiver": conf.name, "result": str(action)}

    @app.get("/", response_class=HTMLResponse)
    async def home():
        receivers = ", ".join(html.escape(rc.name) for rc in config.receivers)
        return _HOME_PAGE.format(version=html.escape(__version__), receivers=receivers)

    @app.get("/config", response_class=HTMLResponse)
    async def show_config():
        body = html.escape(config.redacted_yaml())
        return f"<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>Configuration</title></head>" \
               f"<body><h1>Configuration</h1><pre>{body}</pre></body></html>"

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz():
        return "OK"

    @app.get("/metrics")
    async def metrics():
        return Response(content=render_metrics(), media_type=CONTENT_TYPE_LATEST)

    return app
