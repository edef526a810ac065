"""
Azure DevOps 认证

选择顺序：
1. 环境变量
   - AZURE_TENANT_ID + AZURE_CLIENT_ID + AZURE_CLIENT_SECRET：EnvironmentCredential
   - AZURE_CLIENT_ID + AZURE_SUBSCRIPTION_ID：Managed Identity
   - AZURE_PAT：PAT
2. 接收器配置（与配置校验中的互斥规则一致）
   - Service Principal：tenant_id + client_id + client_secret
   - Workload Identity：tenant_id + client_id，使用 Kubernetes ServiceAccount token 作为 client assertion
   - Managed Identity：client_id + subscription_id
   - PAT：personal_access_token，Basic 认证

Bearer token 由 azure-identity 获取并缓存；凭据对象在进程内复用，token 缓存随之跨请求生效。
"""
import base64
import os
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Dict, Optional, Tuple

from azure.core.exceptions import AzureError
from azure.identity import (
    ClientSecretCredential,
    EnvironmentCredential,
    ManagedIdentityCredential,
    WorkloadIdentityCredential,
)

from ..core.errors import AuthError
from ..core.logging_config import get_logger
from ..core.models import ReceiverConfig

logger = get_logger()

# Azure DevOps 的资源 ID
AZURE_DEVOPS_RESOURCE = "499b84ac-1321-427f-aa17-267ca6975798"
AZURE_DEVOPS_SCOPE = f"{AZURE_DEVOPS_RESOURCE}/.default"

DEFAULT_FEDERATED_TOKEN_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/token"

# (认证方式, 租户, 客户端, 密钥) -> 凭据
_CREDENTIALS: Dict[Tuple[str, str, str, str], "TokenCredential"] = {}
_CREDENTIALS_LOCK = RLock()


class Credential:
    """认证方式基类，get_authorization() 返回 Authorization 请求头的值"""

    kind = ""

    def get_authorization(self) -> str:
        raise NotImplementedError


@dataclass
class PersonalAccessTokenCredential(Credential):
    token: str
    kind = "pat"

    def get_authorization(self) -> str:
        encoded = base64.b64encode(f":{self.token}".encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"


class TokenCredential(Credential):
    """包装 azure-identity 凭据，按 Azure DevOps scope 获取 Bearer token"""

    def __init__(self, kind: str, identity):
        self.kind = kind
        self.identity = identity

    def get_authorization(self) -> str:
        try:
            token = self.identity.get_token(AZURE_DEVOPS_SCOPE)
        except AzureError as e:
            raise AuthError(f"failed to acquire {self.kind} token: {e}") from e
        except OSError as e:
            # workload identity 的 token 文件在获取 token 时才读取
            raise AuthError(f"failed to read federated token file: {e}") from e
        logger.debug(f"已获取 {self.kind} token，有效期至 {token.expires_on}")
        return f"Bearer {token.token}"


def _cached(kind: str, tenant_id: str, client_id: str, secret: str,
            factory: Callable[[], object]) -> TokenCredential:
    """同一组参数只创建一次 azure-identity 凭据"""
    key = (kind, tenant_id, client_id, secret)
    with _CREDENTIALS_LOCK:
        credential = _CREDENTIALS.get(key)
        if credential is None:
            try:
                identity = factory()
            except ValueError as e:
                raise AuthError(f"failed to create {kind} credential: {e}") from e
            credential = TokenCredential(kind, identity)
            _CREDENTIALS[key] = credential
        return credential


def _from_environment() -> Optional[Credential]:
    """环境变量中的凭据，没有时返回 None"""
    tenant = os.environ.get("AZURE_TENANT_ID", "")
    client = os.environ.get("AZURE_CLIENT_ID", "")
    secret = os.environ.get("AZURE_CLIENT_SECRET", "")
    subscription = os.environ.get("AZURE_SUBSCRIPTION_ID", "")
    pat = os.environ.get("AZURE_PAT", "")

    if tenant and client and secret:
        logger.debug("使用环境变量中的 Service Principal 认证")
        return _cached("environment", tenant, client, secret, EnvironmentCredential)
    if client and subscription:
        logger.debug("使用环境变量中的 Managed Identity 认证")
        return _cached("managed_identity", "", client, "",
                       lambda: ManagedIdentityCredential(client_id=client))
    if pat:
        logger.debug("使用环境变量中的 Personal Access Token 认证")
        return PersonalAccessTokenCredential(pat)
    return None


def get_credential(conf: ReceiverConfig) -> Credential:
    """
    选择认证方式，环境变量优先于接收器配置

    Args:
        conf: 接收器配置

    Returns:
        Credential: 认证对象

    Raises:
        AuthError: 没有可用的认证方式
    """
    credential = _from_environment()
    if credential is not None:
        return credential

    tenant, client, secret = conf.tenant_id, conf.client_id, conf.client_secret
    subscription, pat = conf.subscription_id, conf.personal_access_token

    if tenant and client and secret and not subscription and not pat:
        logger.debug(f"接收器 {conf.name} 使用 Service Principal 认证")
        return _cached("service_principal", tenant, client, secret,
                       lambda: ClientSecretCredential(tenant, client, secret))
    if tenant and client and not secret and not subscription and not pat:
        logger.debug(f"接收器 {conf.name} 使用 Workload Identity 认证")
        token_file = os.environ.get("AZURE_FEDERATED_TOKEN_FILE") or DEFAULT_FEDERATED_TOKEN_FILE
        return _cached("workload_identity", tenant, client, "",
                       lambda: WorkloadIdentityCredential(tenant_id=tenant, client_id=client,
                                                          token_file_path=token_file))
    if not tenant and client and not secret and subscription and not pat:
        logger.debug(f"接收器 {conf.name} 使用 Managed Identity 认证")
        return _cached("managed_identity", "", client, "",
                       lambda: ManagedIdentityCredential(client_id=client))
    if not tenant and not client and not secret and not subscription and pat:
        logger.debug(f"接收器 {conf.name} 使用 Personal Access Token 认证")
        return PersonalAccessTokenCredential(pat)

    logger.debug(f"接收器 {conf.name} 没有可用的认证方式")
    raise AuthError("no valid authentication method configured")


def clear_credential_cache() -> None:
    """清理凭据缓存（主要用于测试）"""
    with _CREDENTIALS_LOCK:
        _CREDENTIALS.clear()
