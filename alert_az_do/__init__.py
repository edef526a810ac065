"""
alert-az-do：将 Alertmanager 告警同步为 Azure DevOps 工作项
"""
__version__ = "0.1.0"
