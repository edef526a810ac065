import logging
import threading

import pytest

from alert_az_do.core.errors import NotifyError, RemoteCallError
from alert_az_do.core.models import AutoResolve, PatchOp
from alert_az_do.services.group_lock import active_groups, group_lock
from alert_az_do.services.receiver_service import ReceiverService
from alert_az_do.services.reconciler import (
    ReconcileAction,
    Reconciler,
    UPDATE_COMMENT,
    build_fingerprint_query,
)

from tests.helpers import make_alert, make_data


def _op(document, path):
    matches = [op for op in document if op.path == path]
    assert len(matches) <= 1, f"{path} appears more than once"
    return matches[0] if matches else None


def test_create_when_no_existing_item(receiver_conf, renderer, fake_client):
    data = make_data(make_alert("f1"))

    action = Reconciler(receiver_conf, renderer, fake_client).reconcile(data, "Ops")

    assert action == ReconcileAction.CREATED
    creates = fake_client.calls_of("create")
    assert len(creates) == 1
    assert not fake_client.calls_of("update")
    _, project, work_item_type, document = creates[0]
    assert project == "Ops"
    assert work_item_type == "Bug"
    assert _op(document, "/fields/System.Title").value == "[firing] test"
    assert _op(document, "/fields/System.Tags").value == "Fingerprint:f1"


def test_create_tags_only_firing_fingerprints(receiver_conf, renderer, fake_client):
    data = make_data(make_alert("f1"), make_alert("f2", "resolved"), make_alert("f3"))

    Reconciler(receiver_conf, renderer, fake_client).reconcile(data, "Ops")

    document = fake_client.calls_of("create")[0][3]
    tags = _op(document, "/fields/System.Tags")
    assert tags.op == PatchOp.ADD
    assert tags.value == "Fingerprint:f1; Fingerprint:f3"


def test_search_covers_all_alerts(receiver_conf, renderer, fake_client):
    data = make_data(make_alert("f1", "resolved"), make_alert("f2"))

    Reconciler(receiver_conf, renderer, fake_client).reconcile(data, "Ops")

    wiql = fake_client.calls_of("query")[0][1]
    assert "[System.TeamProject] = 'Ops'" in wiql
    assert "[System.Tags] CONTAINS 'Fingerprint:f1'" in wiql
    assert "[System.Tags] CONTAINS 'Fingerprint:f2'" in wiql


def test_update_replaces_tags_with_all_fingerprints(receiver_conf, renderer, fake_client):
    item = fake_client.add_item("Ops", ["Fingerprint:f1"], state="Active")
    data = make_data(make_alert("f1", "resolved"), make_alert("f2"))

    action = Reconciler(receiver_conf, renderer, fake_client).reconcile(data, "Ops")

    assert action == ReconcileAction.UPDATED
    assert not fake_client.calls_of("create")
    updates = fake_client.calls_of("update")
    assert len(updates) == 1
    _, item_id, document = updates[0]
    assert item_id == item.id
    tags = _op(document, "/fields/System.Tags")
    assert tags.op == PatchOp.REPLACE
    assert "Fingerprint:f1" in tags.value
    assert "Fingerprint:f2" in tags.value
    assert _op(document, "/fields/System.State") is None


def test_update_document_is_stable(receiver_conf, renderer, fake_client):
    receiver_conf.fields = {"System.AreaPath": "Ops\\Alerts", "Custom.Severity": "{{ commonLabels.severity }}"}
    fake_client.add_item("Ops", ["Fingerprint:f1"], state="Active")
    data = make_data(make_alert("f1"))
    reconciler = Reconciler(receiver_conf, renderer, fake_client)

    reconciler.reconcile(data, "Ops")
    reconciler.reconcile(data, "Ops")

    first, second = [c[2] for c in fake_client.calls_of("update")]
    assert {o.to_json()["path"]: o.to_json() for o in first} == {o.to_json()["path"]: o.to_json() for o in second}


def test_update_skipped_in_skip_reopen_state(receiver_conf, renderer, fake_client):
    receiver_conf.skip_reopen_state = "Removed"
    fake_client.add_item("Ops", ["Fingerprint:f1"], state="Removed")

    action = Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    assert action == ReconcileAction.SKIPPED
    assert not fake_client.calls_of("update")
    assert not fake_client.calls_of("create")


def test_empty_skip_reopen_state_does_not_match_empty_state(receiver_conf, renderer, fake_client):
    fake_client.add_item("Ops", ["Fingerprint:f1"], state="")

    action = Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    assert action == ReconcileAction.UPDATED


def test_update_reopens_auto_resolved_item(receiver_conf, renderer, fake_client):
    receiver_conf.auto_resolve = AutoResolve(state="Resolved")
    fake_client.add_item("Ops", ["Fingerprint:f1"], state="Resolved")

    Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    document = fake_client.calls_of("update")[0][2]
    state = _op(document, "/fields/System.State")
    assert state.op == PatchOp.REPLACE
    assert state.value == "Active"


def test_update_does_not_reopen_without_auto_resolve(receiver_conf, renderer, fake_client):
    fake_client.add_item("Ops", ["Fingerprint:f1"], state="Resolved")

    Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    assert _op(fake_client.calls_of("update")[0][2], "/fields/System.State") is None


def test_update_posts_comment(receiver_conf, renderer, fake_client):
    receiver_conf.update_in_comment = True
    item = fake_client.add_item("Team Project", ["Fingerprint:f1"])

    Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Team Project")

    comments = fake_client.calls_of("comment")
    assert comments == [("comment", "Team Project", item.id, UPDATE_COMMENT)]


def test_comment_failure_is_reported(receiver_conf, renderer, fake_client):
    receiver_conf.update_in_comment = True
    fake_client.add_item("Ops", ["Fingerprint:f1"])
    fake_client.failures["comment"] = RemoteCallError("create work item comment", "HTTP 500: boom", 500)

    with pytest.raises(NotifyError) as exc_info:
        Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    assert exc_info.value.stage == "add comment to work item"
    assert len(fake_client.calls_of("update")) == 1


def test_resolve_sets_auto_resolve_state(receiver_conf, renderer, fake_client):
    receiver_conf.auto_resolve = AutoResolve(state="Resolved")
    item = fake_client.add_item("Ops", ["Fingerprint:f1"])
    data = make_data(make_alert("f1", "resolved"))

    action = Reconciler(receiver_conf, renderer, fake_client).reconcile(data, "Ops")

    assert action == ReconcileAction.RESOLVED
    assert not fake_client.calls_of("create")
    updates = fake_client.calls_of("update")
    assert len(updates) == 1
    state = _op(updates[0][2], "/fields/System.State")
    assert state.op == PatchOp.REPLACE
    assert state.value == "Resolved"
    assert _op(updates[0][2], "/fields/System.Tags") is None
    assert fake_client.items[item.id].fields["System.State"] == "Resolved"


def test_resolve_without_match_is_noop(receiver_conf, renderer, fake_client):
    receiver_conf.auto_resolve = AutoResolve(state="Resolved")

    action = Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1", "resolved")), "Ops")

    assert action == ReconcileAction.NOOP
    assert not fake_client.calls_of("update")


def test_resolved_without_auto_resolve_does_nothing(receiver_conf, renderer, fake_client):
    fake_client.add_item("Ops", ["Fingerprint:f1"])

    action = Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1", "resolved")), "Ops")

    assert action == ReconcileAction.NOOP
    assert fake_client.calls == []


def test_duplicate_match_creates_new_item(receiver_conf, renderer, fake_client, caplog):
    fake_client.add_item("Ops", ["Fingerprint:f1"])
    fake_client.add_item("Ops", ["Fingerprint:f1"])

    with caplog.at_level(logging.WARNING, logger="alert-az-do"):
        action = Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    assert action == ReconcileAction.CREATED
    assert not fake_client.calls_of("get")
    assert not fake_client.calls_of("update")
    assert "多个工作项包含相同指纹" in caplog.text


def test_title_truncated_to_128_characters(receiver_conf, renderer, fake_client):
    receiver_conf.summary = "x" * 200

    Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    title = _op(fake_client.calls_of("create")[0][3], "/fields/System.Title").value
    assert title == "x" * 128


def test_document_order_and_optional_fields(receiver_conf, renderer, fake_client):
    receiver_conf.priority = "{% if commonLabels.severity == 'critical' %}1{% else %}3{% endif %}"
    receiver_conf.fields = {
        "System.AssignedTo": "oncall@example.com",
        "Custom.Team": "{{ commonLabels.alertname | lower }}",
        "": "empty",
    }
    reconciler = Reconciler(receiver_conf, renderer, fake_client)

    document = reconciler.build_document(make_data(make_alert("f1")), add_fingerprint=True)

    assert [op.path for op in document] == [
        "/fields/System.Title",
        "/fields/System.Description",
        "/fields/System.Tags",
        "/fields/Microsoft.VSTS.Common.Priority",
        "/fields/",
        "/fields/Custom.Team",
        "/fields/System.AssignedTo",
    ]
    assert all(op.op == PatchOp.ADD for op in document)
    assert _op(document, "/fields/Microsoft.VSTS.Common.Priority").value == "1"
    assert _op(document, "/fields/Custom.Team").value == "highlatency"
    assert _op(document, "/fields/System.Description").value == "latency is high"


def test_document_without_fingerprint(receiver_conf, renderer, fake_client):
    receiver_conf.description = ""
    reconciler = Reconciler(receiver_conf, renderer, fake_client)

    document = reconciler.build_document(make_data(make_alert("f1")), add_fingerprint=False)

    assert [op.path for op in document] == ["/fields/System.Title", "/fields/System.Description"]
    assert document[1].value == ""


@pytest.mark.parametrize("attr, template, stage, field", [
    ("summary", "{{ status.nope() }}", "generate work item document", "title"),
    ("description", "{% if %}", "generate work item document", "description"),
    ("priority", "{{ missing.attr }}", "generate work item document", "priority"),
    ("issue_type", "{{ missing.attr }}", "render work item type", "work item type"),
])
def test_render_failures_name_stage_and_field(receiver_conf, renderer, fake_client, attr, template, stage, field):
    setattr(receiver_conf, attr, template)

    with pytest.raises(NotifyError) as exc_info:
        Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    assert exc_info.value.stage == stage
    assert exc_info.value.cause.field == field
    assert not fake_client.calls_of("create")


def test_custom_field_render_failure(receiver_conf, renderer, fake_client):
    receiver_conf.fields = {"Custom.Broken": "{{ nope.nope }}"}

    with pytest.raises(NotifyError) as exc_info:
        Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    assert exc_info.value.cause.field == "field Custom.Broken"


def test_resolve_render_failure_stage(receiver_conf, renderer, fake_client):
    receiver_conf.auto_resolve = AutoResolve(state="Resolved")
    receiver_conf.summary = "{{ nope.nope }}"
    fake_client.add_item("Ops", ["Fingerprint:f1"])

    with pytest.raises(NotifyError) as exc_info:
        Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1", "resolved")), "Ops")

    assert exc_info.value.stage == "generate resolve document"


@pytest.mark.parametrize("failing, stage, existing", [
    ("query", "find work item", False),
    ("get", "find work item", True),
    ("create", "create work item", False),
    ("update", "update work item", True),
])
def test_remote_failures_name_stage(receiver_conf, renderer, fake_client, failing, stage, existing):
    if existing:
        fake_client.add_item("Ops", ["Fingerprint:f1"])
    cause = RemoteCallError(failing, "connection refused")
    fake_client.failures[failing] = cause

    with pytest.raises(NotifyError) as exc_info:
        Reconciler(receiver_conf, renderer, fake_client).reconcile(make_data(make_alert("f1")), "Ops")

    assert exc_info.value.stage == stage
    assert exc_info.value.cause is cause
    assert str(exc_info.value).startswith(f"{stage}: ")


def test_fingerprint_query_escapes_quotes():
    wiql = build_fingerprint_query("O'Brien", ["Fingerprint:a'b", "Fingerprint:c"])

    assert wiql == (
        "SELECT [System.Id] FROM WorkItems WHERE [System.TeamProject] = 'O''Brien' "
        "AND ([System.Tags] CONTAINS 'Fingerprint:a''b' OR [System.Tags] CONTAINS 'Fingerprint:c')"
    )


def test_receiver_service_renders_project(receiver_conf, renderer, fake_client):
    receiver_conf.project = "{{ commonLabels.severity | title }}"

    action = ReceiverService(receiver_conf, renderer, fake_client).notify(make_data(make_alert("f1")))

    assert action == ReconcileAction.CREATED
    assert fake_client.calls_of("create")[0][1] == "Critical"


def test_receiver_service_project_render_failure(receiver_conf, renderer, fake_client):
    receiver_conf.project = "{{ nope.nope }}"

    with pytest.raises(NotifyError) as exc_info:
        ReceiverService(receiver_conf, renderer, fake_client).notify(make_data(make_alert("f1")))

    assert exc_info.value.stage == "generate project from template"
    assert fake_client.calls == []


def test_group_lock_serializes_same_group():
    entered = threading.Event()
    release = threading.Event()
    order = []

    def first():
        with group_lock("Ops", ["Fingerprint:f1", "Fingerprint:f2"]):
            order.append("first")
            entered.set()
            release.wait(5)

    def second():
        entered.wait(5)
        with group_lock("Ops", ["Fingerprint:f2", "Fingerprint:f1"]):
            order.append("second")

    t1 = threading.Thread(target=first)
    t2 = threading.Thread(target=second)
    t1.start()
    t2.start()
    entered.wait(5)
    t2.join(0.2)
    assert order == ["first"]
    release.set()
    t1.join(5)
    t2.join(5)

    assert order == ["first", "second"]
    assert active_groups() == 0
