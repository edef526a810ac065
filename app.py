"""
FastAPI 应用主入口
"""
from alert_az_do.core.config import load_config
from alert_az_do.core.logging_config import get_logger, setup_logging
from alert_az_do.server import create_app
from alert_az_do.templates.template_renderer import TemplateRenderer

# 加载配置（config 只读配置，不初始化日志）
CONFIG = load_config()
# 由 app 在启动时显式初始化日志（仅此一处），避免重复 handler 导致同一条日志打两遍
setup_logging(**CONFIG.logging)
logger = get_logger()
logger.info(f"配置加载完成，共 {len(CONFIG.receivers)} 个接收器")

RENDERER = TemplateRenderer(CONFIG.template)

app = create_app(CONFIG, RENDERER)
