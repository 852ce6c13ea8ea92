"""
test_best_practices.py - Tests for structural and best practice rules
"""

import pytest

from wflint.core import Position


def workflow_with_steps(steps, header="on: push\n", job_extra=""):
    return (
        header
        + "jobs:\n  build:\n    runs-on: ubuntu-latest\n    timeout-minutes: 5\n"
        + job_extra
        + "    steps:\n"
        + steps
    )


def test_job_needs_unknown_self_and_duplicate(diagnostics_for):
    """Test that JobNeedsRule reports every kind of bad dependency."""
    content = """on: push
jobs:
  build:
    runs-on: x
    steps:
      - run: a
  test:
    runs-on: x
    needs: [build, Build, test, deploy]
    steps:
      - run: a
"""
    found = diagnostics_for(content, "job-needs")
    assert [d.column for d in found] == [20, 27, 33]
    assert "listed more than once" in found[0].message
    assert "cannot depend on itself" in found[1].message
    assert "needs job 'deploy' which does not exist" in found[2].message


def test_job_needs_cycle(diagnostics_for):
    content = """on: push
jobs:
  a:
    runs-on: x
    needs: b
    steps:
      - run: a
  b:
    runs-on: x
    needs: [a]
    steps:
      - run: b
"""
    found = diagnostics_for(content, "job-needs")
    assert len(found) == 1
    assert found[0].message == "cyclic dependency in 'needs': a -> b -> a"
    assert found[0].position == Position(3, 3)


def test_job_needs_valid_chain(diagnostics_for):
    content = """on: push
jobs:
  a:
    runs-on: x
    steps:
      - run: a
  b:
    needs: a
    runs-on: x
    steps:
      - run: b
  c:
    needs: [a, b]
    runs-on: x
    steps:
      - run: c
"""
    assert diagnostics_for(content, "job-needs") == []


def test_env_var_names(diagnostics_for):
    content = workflow_with_steps(
        "      - run: a\n        env:\n          'BAD NAME': x\n          GOOD_NAME: y\n",
        header="on: push\nenv:\n  'A=B': 1\n",
    )
    found = diagnostics_for(content, "env-var")
    assert [d.line for d in found] == [3, 11]
    assert "'A=B'" in found[0].message


def test_ids(diagnostics_for):
    content = """on: push
jobs:
  1build:
    runs-on: x
    timeout-minutes: 5
    steps:
      - id: setup
        run: a
      - id: Setup
        run: b
      - id: bad.id
        run: c
"""
    found = diagnostics_for(content, "id")
    assert len(found) == 3
    assert "invalid job ID '1build'" in found[0].message
    assert "duplicates the step ID at line 7" in found[1].message
    assert found[1].position == Position(9, 13)
    assert "invalid step ID 'bad.id'" in found[2].message


def test_step_ids_are_scoped_to_jobs(diagnostics_for):
    content = """on: push
jobs:
  a:
    runs-on: x
    steps:
      - id: same
        run: a
  b:
    runs-on: x
    steps:
      - id: same
        run: b
"""
    assert diagnostics_for(content, "id") == []


def test_permissions_write_all(diagnostics_for):
    found = diagnostics_for(workflow_with_steps("      - run: a\n", header="on: push\npermissions: write-all\n"), "permissions")
    assert len(found) == 1
    assert found[0].severity == "HIGH"
    assert found[0].position == Position(2, 14)


def test_permissions_scopes(diagnostics_for):
    content = workflow_with_steps(
        "      - run: a\n",
        job_extra="    permissions:\n      contents: read\n      id-token: read\n      wiki: write\n",
    )
    found = diagnostics_for(content, "permissions")
    assert len(found) == 2
    assert "'read' is not a valid value for permission scope 'id-token'" in found[0].message
    assert found[0].position == Position(8, 17)
    assert "unknown permission scope 'wiki'" in found[1].message
    assert found[1].position == Position(9, 7)


def test_permissions_invalid_string(diagnostics_for):
    found = diagnostics_for(workflow_with_steps("      - run: a\n", header="on: push\npermissions: read\n"), "permissions")
    assert len(found) == 1
    assert "not a valid value" in found[0].message
    assert found[0].severity == "MEDIUM"


def test_permissions_read_all_is_fine(diagnostics_for):
    content = workflow_with_steps("      - run: a\n", header="on: push\npermissions: read-all\n")
    assert diagnostics_for(content, "permissions") == []


def test_deprecated_commands(diagnostics_for):
    content = workflow_with_steps(
        "      - run: |\n"
        '          echo "::set-output name=x::1"\n'
        '          echo "::add-path::/opt/bin"\n'
        '          echo "save-state is not a command here"\n'
    )
    found = diagnostics_for(content, "deprecated-commands")
    assert len(found) == 2
    assert "'set-output'" in found[0].message
    assert "GITHUB_OUTPUT" in found[0].message
    assert "'add-path'" in found[1].message
    assert found[0].position == Position(7, 14)


def test_conditional_always_true(diagnostics_for):
    content = workflow_with_steps(
        "      - run: a\n        if: ${{ false }} && true\n"
        "      - run: b\n        if: ${{ github.ref == 'refs/heads/main' }}\n"
        "      - run: c\n        if: github.ref == 'refs/heads/main'\n"
    )
    found = diagnostics_for(content, "conditional")
    assert len(found) == 1
    assert found[0].line == 8
    assert "always evaluated to true" in found[0].message


def test_missing_timeout(diagnostics_for):
    content = """on: push
jobs:
  build:
    runs-on: x
    steps:
      - run: a
  call:
    uses: org/repo/.github/workflows/x.yml@0123456789abcdef0123456789abcdef01234567
  bounded:
    runs-on: x
    timeout-minutes: ${{ fromJSON(vars.TIMEOUT) }}
    steps:
      - run: a
"""
    found = diagnostics_for(content, "missing-timeout-minutes")
    assert len(found) == 1
    assert found[0].position == Position(3, 3)
    assert found[0].severity == "LOW"


def test_missing_timeout_min_steps(diagnostics_for):
    content = "on: push\njobs:\n  tiny:\n    runs-on: x\n    steps:\n      - run: a\n"
    config = {"policy": {"timeout_min_steps": 2}}
    assert diagnostics_for(content, "missing-timeout-minutes", config=config) == []
    assert len(diagnostics_for(content, "missing-timeout-minutes")) == 1


@pytest.mark.parametrize(
    "uses,reported",
    [
        ("actions/checkout@v4", True),
        ("actions/checkout@main", True),
        ("actions/checkout", True),
        ("actions/checkout@8e5e7e5ab8b370d6c329ec480221332ada57f0ab", False),
        ("./.github/actions/local", False),
        ("docker://alpine:3.19", False),
    ],
)
def test_commit_sha(diagnostics_for, uses, reported):
    found = diagnostics_for(workflow_with_steps(f"      - uses: {uses}\n"), "commit-sha")
    assert bool(found) == reported
    if reported:
        assert found[0].position == Position(7, 15)


def test_commit_sha_on_reusable_workflow(diagnostics_for):
    content = "on: push\njobs:\n  call:\n    uses: org/repo/.github/workflows/x.yml@v1\n"
    found = diagnostics_for(content, "commit-sha")
    assert len(found) == 1
    assert "reusable workflow" in found[0].message
    assert "(ref 'v1')" in found[0].message
