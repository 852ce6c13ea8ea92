"""
test_injection_rules.py - Tests for script and environment injection rules
"""

import pytest

from wflint.core import Position, lint
from wflint.rules.injection import CRITICAL, Finding, InjectionRule


def job_workflow(steps, on="pull_request_target", job_extra=""):
    return (
        f"on: {on}\n"
        "permissions:\n  contents: read\n"
        "jobs:\n  build:\n    runs-on: ubuntu-latest\n    timeout-minutes: 5\n"
        + job_extra
        + "    steps:\n"
        + steps
    )


def rule_ids(diagnostics):
    return [d.rule_id for d in diagnostics]


def test_direct_interpolation_is_critical(diagnostics_for):
    content = job_workflow('      - run: echo "${{ github.event.pull_request.title }}"\n')
    found = diagnostics_for(content, "code-injection-critical")
    assert len(found) == 1
    assert found[0].position == Position(9, 9)
    assert '"github.event.pull_request.title" is potentially untrusted' in found[0].message
    assert diagnostics_for(content, "code-injection-medium") == []


def test_trusted_values_are_not_reported(diagnostics_for):
    content = job_workflow(
        '      - run: echo "${{ github.sha }} ${{ github.event.pull_request.number }}"\n'
        "      - run: echo ${{ contains(github.event.pull_request.title, 'wip') }}\n"
    )
    assert diagnostics_for(content, "code-injection-critical") == []
    assert diagnostics_for(content, "code-injection-medium") == []


def test_github_script_input(diagnostics_for):
    content = job_workflow(
        "      - uses: actions/github-script@v7\n"
        "        with:\n"
        "          script: |\n"
        "            console.log('${{ github.event.pull_request.body }}')\n"
    )
    found = diagnostics_for(content, "code-injection-critical")
    assert len(found) == 1
    assert "'script' input" in found[0].message


def test_env_var_hand_off_is_medium(diagnostics_for):
    content = job_workflow(
        "      - run: echo \"${{ env.TITLE }}\"\n"
        "        env:\n"
        "          TITLE: ${{ github.event.pull_request.title }}\n"
        '      - run: echo "$TITLE"\n'
        "        env:\n"
        "          TITLE: ${{ github.event.pull_request.title }}\n"
    )
    medium = diagnostics_for(content, "code-injection-medium")
    assert len(medium) == 1
    assert medium[0].line == 9
    assert "'${{ env.TITLE }}' carries untrusted input" in medium[0].message
    assert diagnostics_for(content, "code-injection-critical") == []


def test_step_output_hand_off_is_medium(diagnostics_for):
    content = job_workflow(
        "      - id: meta\n"
        '        run: echo "title=${{ github.event.pull_request.title }}" >> "$GITHUB_OUTPUT"\n'
        '      - run: echo "${{ steps.meta.outputs.title }}"\n'
    )
    found = diagnostics_for(content, "code-injection-medium")
    assert len(found) == 1
    assert found[0].line == 11
    assert "steps.meta.outputs.title" in found[0].message


def test_step_outputs_do_not_leak_between_jobs(diagnostics_for):
    content = """on: pull_request_target
permissions: read-all
jobs:
  a:
    runs-on: x
    timeout-minutes: 5
    steps:
      - id: meta
        run: echo "title=${{ github.event.pull_request.title }}" >> "$GITHUB_OUTPUT"
  b:
    runs-on: x
    timeout-minutes: 5
    steps:
      - id: meta
        run: echo "title=fixed" >> "$GITHUB_OUTPUT"
      - run: echo "${{ steps.meta.outputs.title }}"
"""
    assert diagnostics_for(content, "code-injection-medium") == []


def test_eval_of_tainted_variable(diagnostics_for):
    content = job_workflow(
        '      - run: eval "$CMD"\n'
        "        env:\n"
        "          CMD: ${{ github.event.pull_request.body }}\n"
    )
    found = diagnostics_for(content, "code-injection-medium")
    assert len(found) == 1
    assert "$CMD holds untrusted input" in found[0].message
    assert "executed as code" in found[0].message


def test_critical_can_require_privileged_trigger(diagnostics_for):
    content = job_workflow('      - run: echo "${{ github.head_ref }}"\n', on="pull_request")
    assert len(diagnostics_for(content, "code-injection-critical")) == 1

    config = {"policy": {"critical_requires_privileged_trigger": True}}
    assert diagnostics_for(content, "code-injection-critical", config=config) == []
    assert len(diagnostics_for(content, "code-injection-medium", config=config)) == 1


def test_job_condition_narrows_privileged_trigger(diagnostics_for):
    content = job_workflow(
        '      - run: echo "${{ github.head_ref }}"\n',
        on="[pull_request, pull_request_target]",
        job_extra="    if: github.event_name == 'pull_request'\n",
    )
    config = {"policy": {"critical_requires_privileged_trigger": True}}
    assert diagnostics_for(content, "code-injection-critical", config=config) == []


def test_envvar_injection(diagnostics_for):
    content = job_workflow(
        '      - run: echo "TITLE=${{ github.event.pull_request.title }}" >> $GITHUB_ENV\n'
        '      - run: echo "Title ${{ github.event.pull_request.title }}"\n'
    )
    found = diagnostics_for(content, "envvar-injection-critical")
    assert len(found) == 1
    assert found[0].line == 9
    assert "written to $GITHUB_ENV" in found[0].message


def test_envvar_injection_heredoc(diagnostics_for):
    content = job_workflow(
        "      - run: |\n"
        "          {\n"
        '            echo "BODY<<EOF"\n'
        "            cat <<EOF >> \"$GITHUB_ENV\"\n"
        "          ${{ github.event.pull_request.body }}\n"
        "          EOF\n"
        "          }\n"
    )
    assert len(diagnostics_for(content, "envvar-injection-critical")) == 1


def test_envvar_injection_through_shell_variable(diagnostics_for):
    content = job_workflow(
        '      - run: echo "TITLE=$TITLE" >> "$GITHUB_ENV"\n'
        "        env:\n"
        "          TITLE: ${{ github.event.pull_request.title }}\n"
    )
    assert diagnostics_for(content, "envvar-injection-critical") == []
    found = diagnostics_for(content, "envvar-injection-medium")
    assert len(found) == 1
    assert "$TITLE holds untrusted input" in found[0].message


def test_envpath_injection(diagnostics_for):
    content = job_workflow(
        '      - run: echo "${{ github.event.pull_request.head.ref }}/bin" >> $GITHUB_PATH\n'
    )
    found = diagnostics_for(content, "envpath-injection-critical")
    assert len(found) == 1
    assert "$GITHUB_PATH" in found[0].message
    assert diagnostics_for(content, "envvar-injection-critical") == []


def test_injection_rules_run_together(insecure_workflow_content):
    result = lint(insecure_workflow_content, "insecure.yml")
    ids = rule_ids(result.diagnostics)
    assert ids.count("code-injection-critical") == 2
    assert ids.count("envvar-injection-critical") == 1


def test_injection_rule_requires_findings():
    with pytest.raises(TypeError):
        InjectionRule("partial", "LOW", "", "")

    class Incomplete(InjectionRule):
        pass

    with pytest.raises(TypeError):
        Incomplete("incomplete", "LOW", "", "")

    class Complete(InjectionRule):
        def findings(self, step, env_taint):
            return [Finding(CRITICAL, "checked")]

    rule = Complete("complete", "LOW", "", "")
    result = lint(job_workflow("      - run: echo hi\n"), "ci.yml", rule_selection=[rule])
    assert [d.message for d in result.diagnostics] == ["checked"]


def caller_workflow(on):
    return (
        f"on: {on}\n"
        "permissions:\n  contents: read\n"
        "jobs:\n"
        "  call:\n"
        "    uses: org/repo/.github/workflows/build.yml@v1\n"
        "    with:\n"
        "      title: ${{ github.event.pull_request.title }}\n"
        "      sha: ${{ github.sha }}\n"
    )


def test_untrusted_input_passed_to_reusable_workflow(diagnostics_for):
    found = diagnostics_for(caller_workflow("pull_request_target"), "reusable-workflow-taint")
    assert len(found) == 1
    assert found[0].position == Position(8, 14)
    assert found[0].severity == "CRITICAL"
    assert "input 'title' of reusable workflow 'org/repo/.github/workflows/build.yml@v1'" in found[0].message
    assert '"github.event.pull_request.title"' in found[0].message


def test_reusable_workflow_taint_without_privileged_trigger(diagnostics_for):
    found = diagnostics_for(caller_workflow("pull_request"), "reusable-workflow-taint")
    assert len(found) == 1
    assert found[0].severity == "MEDIUM"
