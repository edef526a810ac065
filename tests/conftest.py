import pytest

from alert_az_do.core.models import ReceiverConfig
from alert_az_do.templates.template_renderer import TemplateRenderer

from tests.helpers import FakeWorkItemClient


@pytest.fixture
def fake_client() -> FakeWorkItemClient:
    return FakeWorkItemClient()


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer()


@pytest.fixture
def receiver_conf() -> ReceiverConfig:
    return ReceiverConfig(
        name="azdo",
        organization="my-org",
        personal_access_token="pat",
        project="Ops",
        issue_type="Bug",
        summary="[{{ status }}] test",
        reopen_state="Active",
        description="{{ commonAnnotations.summary }}",
    )
