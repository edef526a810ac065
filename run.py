"""
应用启动入口
从 config.yaml 读取配置并启动 uvicorn 服务器
"""
import argparse
import os

import uvicorn

from alert_az_do.core.config import load_config

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Alertmanager webhook receiver for Azure DevOps")
    parser.add_argument("--config", help="配置文件路径（默认使用 CONFIG_FILE 环境变量或 config.yaml）")
    args = parser.parse_args()

    if args.config:
        # app 模块在 worker 进程中重新加载配置，通过环境变量传递路径
        os.environ["CONFIG_FILE"] = os.path.abspath(args.config)

    CONFIG = load_config(args.config)

    # 从配置读取服务器设置（必须配置）
    server_config = CONFIG.server
    if not server_config:
        raise ValueError("config.yaml 中必须配置 server 节点")

    host = server_config.get("host")
    port = os.getenv("PORT") or server_config.get("port")

    if host is None:
        raise ValueError("config.yaml 中必须配置 server.host")
    if port is None:
        raise ValueError("config.yaml 中必须配置 server.port")

    # 从环境变量读取工作进程数和超时时间（如果设置了）
    workers = int(os.getenv("WORKERS", 4))
    timeout = int(os.getenv("TIMEOUT", 30))

    uvicorn.run(
        "app:app",
        host=host,
        port=int(port),
        workers=workers,
        timeout_keep_alive=timeout,
        log_level="info",
        access_log=True,
    )
