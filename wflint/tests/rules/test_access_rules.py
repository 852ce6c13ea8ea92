"""
test_access_rules.py - Tests for access control rules
"""

import pytest

from wflint.core import Position


def job_workflow(steps, on="push", job_extra="", runs_on="ubuntu-latest", header=""):
    return (
        f"on: {on}\n"
        + header
        + "jobs:\n  build:\n"
        f"    runs-on: {runs_on}\n"
        "    timeout-minutes: 5\n"
        + job_extra
        + "    steps:\n"
        + steps
    )


WRITE_PERMISSIONS = "    permissions:\n      contents: write\n      issues: read\n"


def test_unused_write_permissions(diagnostics_for):
    content = job_workflow("      - run: make test\n", job_extra=WRITE_PERMISSIONS)
    found = diagnostics_for(content, "improper-access-control")
    assert len(found) == 1
    assert found[0].position == Position(7, 7)
    assert found[0].severity == "MEDIUM"
    assert "job 'build' is granted write access (contents)" in found[0].message


@pytest.mark.parametrize(
    "step",
    [
        "      - run: git push origin HEAD\n",
        "      - run: gh release create v1\n",
        "      - uses: softprops/action-gh-release@v2\n",
    ],
)
def test_used_write_permissions(diagnostics_for, step):
    content = job_workflow(step, job_extra=WRITE_PERMISSIONS)
    assert diagnostics_for(content, "improper-access-control") == []


def test_read_only_permissions_are_fine(diagnostics_for):
    content = job_workflow(
        "      - run: make test\n", job_extra="    permissions:\n      contents: read\n"
    )
    assert diagnostics_for(content, "improper-access-control") == []


def test_label_gated_mutable_checkout(diagnostics_for):
    content = job_workflow(
        "      - uses: actions/checkout@v4\n"
        "        with:\n"
        "          ref: ${{ github.event.pull_request.head.ref }}\n",
        on="pull_request_target",
        job_extra="    if: contains(github.event.pull_request.labels.*.name, 'safe to test')\n",
    )
    found = diagnostics_for(content, "improper-access-control")
    assert len(found) == 1
    assert found[0].position == Position(8, 9)
    assert found[0].severity == "HIGH"
    assert "label-gated pull_request_target job checks out mutable ref" in found[0].message
    assert "with write permissions (default)" in found[0].message


def test_bot_condition(diagnostics_for):
    content = job_workflow(
        "      - run: gh pr merge --auto\n",
        on="pull_request_target",
        job_extra="    if: github.actor == 'dependabot[bot]'\n",
    )
    found = diagnostics_for(content, "bot-conditions")
    assert len(found) == 1
    assert found[0].position == Position(6, 9)
    assert "condition compares github.actor with 'dependabot[bot]'" in found[0].message


def test_bot_condition_on_step(diagnostics_for):
    content = job_workflow(
        "      - run: a\n        if: ${{ 'renovate[bot]' == github.triggering_actor }}\n",
        on="pull_request",
    )
    assert len(diagnostics_for(content, "bot-conditions")) == 1


def test_bot_condition_trusted_trigger(diagnostics_for):
    content = job_workflow(
        "      - run: a\n", job_extra="    if: github.actor == 'dependabot[bot]'\n"
    )
    assert diagnostics_for(content, "bot-conditions") == []


def test_bot_condition_on_pull_request_author(diagnostics_for):
    content = job_workflow(
        "      - run: a\n",
        on="pull_request_target",
        job_extra="    if: github.event.pull_request.user.login == 'dependabot[bot]'\n",
    )
    assert diagnostics_for(content, "bot-conditions") == []


def test_unsound_contains_on_actor(diagnostics_for):
    content = job_workflow("      - run: a\n", job_extra="    if: contains(github.actor, 'octocat')\n")
    found = diagnostics_for(content, "unsound-contains")
    assert len(found) == 1
    assert found[0].line == 6
    assert "contains(github.actor, 'octocat') matches any actor" in found[0].message


def test_unsound_contains_string_haystack(diagnostics_for):
    content = job_workflow(
        "      - run: a\n        if: contains('refs/heads/main refs/heads/release', github.ref)\n"
    )
    found = diagnostics_for(content, "unsound-contains")
    assert len(found) == 1
    assert "contains('refs/heads/main refs/heads/release', github.ref) checks an attacker-controlled value" in found[0].message


def test_contains_with_exact_list_is_fine(diagnostics_for):
    content = job_workflow(
        "      - run: a\n",
        job_extra="""    if: contains(fromJSON('["octocat", "hubot"]'), github.actor)\n""",
    )
    assert diagnostics_for(content, "unsound-contains") == []


def test_self_hosted_runner_labels(diagnostics_for):
    content = job_workflow("      - run: a\n", on="pull_request", runs_on="[self-hosted, linux]")
    found = diagnostics_for(content, "self-hosted-runners")
    assert len(found) == 1
    assert found[0].position == Position(4, 14)
    assert "job 'build' runs on a self-hosted runner and can be triggered by pull_request" in found[0].message


def test_self_hosted_runner_group(diagnostics_for):
    content = """on: issue_comment
jobs:
  build:
    timeout-minutes: 5
    runs-on:
      group: private-runners
    steps:
      - run: a
"""
    found = diagnostics_for(content, "self-hosted-runners")
    assert len(found) == 1
    assert found[0].position == Position(6, 7)
    assert "runner group 'private-runners'" in found[0].message


def test_self_hosted_runner_through_matrix(diagnostics_for):
    content = job_workflow(
        "      - run: a\n",
        on="pull_request",
        runs_on="${{ matrix.os }}",
        job_extra="    strategy:\n      matrix:\n        os: [ubuntu-latest, self-hosted]\n",
    )
    assert len(diagnostics_for(content, "self-hosted-runners")) == 1


def test_self_hosted_runner_trusted_trigger(diagnostics_for):
    content = job_workflow("      - run: a\n", runs_on="[self-hosted, linux]")
    assert diagnostics_for(content, "self-hosted-runners") == []


def test_dangerous_trigger_without_mitigation(diagnostics_for):
    content = job_workflow("      - run: a\n", on="pull_request_target")
    found = diagnostics_for(content, "dangerous-triggers-critical")
    assert len(found) == 1
    assert found[0].position == Position(1, 5)
    assert "privileged trigger 'pull_request_target' is used without any mitigation" in found[0].message
    assert diagnostics_for(content, "dangerous-triggers-medium") == []


def test_dangerous_trigger_block_form(diagnostics_for):
    content = """on:
  push:
  workflow_run:
    workflows: [CI]
    types: [completed]
jobs:
  report:
    runs-on: ubuntu-latest
    steps:
      - run: a
"""
    found = diagnostics_for(content, "dangerous-triggers-critical")
    assert [d.position for d in found] == [Position(3, 3)]


@pytest.mark.parametrize(
    "job_extra,mitigation",
    [
        ("    if: github.actor == 'octocat'\n", "actor restriction"),
        ("    environment: external\n", "environment protection"),
        ("    if: github.event.pull_request.head.repo.fork == false\n", "fork check"),
    ],
)
def test_dangerous_trigger_weak_mitigation(diagnostics_for, job_extra, mitigation):
    content = job_workflow("      - run: a\n", on="pull_request_target", job_extra=job_extra)
    found = diagnostics_for(content, "dangerous-triggers-medium")
    assert len(found) == 1
    assert f"has weak mitigations ({mitigation})" in found[0].message
    assert diagnostics_for(content, "dangerous-triggers-critical") == []


def test_dangerous_trigger_with_restricted_permissions(diagnostics_for):
    content = job_workflow(
        "      - run: a\n", on="pull_request_target", header="permissions:\n  contents: read\n"
    )
    assert diagnostics_for(content, "dangerous-triggers-critical") == []
    assert diagnostics_for(content, "dangerous-triggers-medium") == []


def test_write_all_is_not_a_mitigation(diagnostics_for):
    content = job_workflow("      - run: a\n", on="issues", header="permissions: write-all\n")
    assert len(diagnostics_for(content, "dangerous-triggers-critical")) == 1


def test_unprivileged_trigger_is_not_dangerous(diagnostics_for):
    content = job_workflow("      - run: a\n", on="pull_request")
    assert diagnostics_for(content, "dangerous-triggers-critical") == []
