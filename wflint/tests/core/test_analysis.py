"""
test_analysis.py - Tests for shared workflow analysis helpers
"""

from wflint.core.analysis import (
    GITHUB_ENV,
    GITHUB_OUTPUT,
    GITHUB_PATH,
    JobTriggerAnalyzer,
    TaintTracker,
    file_write_ranges,
    in_ranges,
    is_cache_action,
    is_mutable_ref,
    is_unsafe_checkout_ref,
    shell_variables,
    tainted_env,
)
from wflint.core.expressions import parse_expression
from wflint.core.untrusted import build_untrusted_table


def job_with_if(parse_workflow, condition, on="[push, pull_request_target, issues]"):
    workflow, _ = parse_workflow(
        f"""on: {on}
jobs:
  a:
    runs-on: x
    if: {condition}
    steps:
      - run: a
"""
    )
    return workflow, workflow.jobs["a"]


def test_file_write_ranges_single_line():
    script = 'echo "A=1"\necho "B=${{ github.ref }}" >> $GITHUB_ENV\n'
    ranges = file_write_ranges(script, GITHUB_ENV)
    assert len(ranges) == 1
    start, end = ranges[0]
    assert script[start:end].startswith('echo "B=')
    assert not in_ranges(0, ranges)
    assert in_ranges(script.index("${{"), ranges)


def test_file_write_ranges_redirect_forms():
    assert file_write_ranges('echo x >> "$GITHUB_PATH"', GITHUB_PATH)
    assert file_write_ranges("echo x >>${GITHUB_ENV}", GITHUB_ENV)
    assert file_write_ranges("echo x | tee -a $GITHUB_ENV", GITHUB_ENV)
    assert file_write_ranges("echo $GITHUB_ENV", GITHUB_ENV) == []
    assert file_write_ranges("echo x >> $GITHUB_ENV", GITHUB_PATH) == []


def test_file_write_ranges_heredoc():
    script = (
        "cat <<EOF >> $GITHUB_ENV\n"
        "TITLE=${{ github.event.issue.title }}\n"
        "EOF\n"
        "echo ${{ github.event.issue.body }}\n"
    )
    ranges = file_write_ranges(script, GITHUB_ENV)
    assert len(ranges) == 2
    assert in_ranges(script.index("TITLE"), ranges)
    assert not in_ranges(script.index("echo"), ranges)


def test_shell_variables_skip_expressions():
    assert shell_variables('echo "$TITLE ${BODY} ${{ github.ref }}"') == ["TITLE", "BODY"]


def test_checkout_ref_patterns():
    assert is_unsafe_checkout_ref("${{ github.event.pull_request.head.sha }}")
    assert is_unsafe_checkout_ref("refs/pull/${{ github.event.number }}/merge")
    assert not is_unsafe_checkout_ref("${{ github.sha }}")
    assert is_mutable_ref("${{ github.head_ref }}")
    assert not is_mutable_ref("${{ github.event.pull_request.head.sha }}")


def test_cache_actions(parse_workflow):
    workflow, _ = parse_workflow(
        """on: push
jobs:
  a:
    runs-on: x
    steps:
      - uses: actions/cache@v4
      - uses: actions/setup-node@v4
        with:
          cache: npm
      - uses: actions/setup-python@v5
"""
    )
    actions = [step.action for step in workflow.jobs["a"].steps]
    assert [is_cache_action(a) for a in actions] == [True, True, False]


def test_tainted_env_scopes(parse_workflow):
    workflow, _ = parse_workflow(
        """on: issues
env:
  TITLE: ${{ github.event.issue.title }}
  SAFE: ${{ github.sha }}
jobs:
  a:
    runs-on: x
    env:
      TITLE: fixed
      BODY: ${{ github.event.issue.body }}
    steps:
      - run: a
"""
    )
    table = build_untrusted_table()
    assert tainted_env([workflow.env], table) == {"TITLE": ["github.event.issue.title"]}
    job = workflow.jobs["a"]
    assert tainted_env([workflow.env, job.env], table) == {"BODY": ["github.event.issue.body"]}


def test_taint_tracker_follows_step_outputs(parse_workflow):
    workflow, _ = parse_workflow(
        """on: issues
jobs:
  a:
    runs-on: x
    steps:
      - id: meta
        run: |
          TITLE="${{ github.event.issue.title }}"
          echo "title=$TITLE" >> "$GITHUB_OUTPUT"
          echo "sha=${{ github.sha }}" >> "$GITHUB_OUTPUT"
      - id: direct
        run: echo "body=${{ github.event.issue.body }}" >> $GITHUB_OUTPUT
"""
    )
    tracker = TaintTracker(build_untrusted_table())
    for step in workflow.jobs["a"].steps:
        tracker.analyze_step(step)

    assert tracker.tainted_outputs == {
        "meta": {"title": ["github.event.issue.title"]},
        "direct": {"body": ["github.event.issue.body"]},
    }

    node, _ = parse_expression("steps.meta.outputs.title")
    assert tracker.indirect_sources(node) == ["github.event.issue.title"]
    node, _ = parse_expression("steps.meta.outputs.sha")
    assert tracker.indirect_sources(node) == []

    tracker.reset()
    assert tracker.tainted_outputs == {}


def test_taint_tracker_env_references():
    tracker = TaintTracker(build_untrusted_table())
    node, _ = parse_expression("env.Title")
    assert tracker.indirect_sources(node, {"TITLE": ["github.event.issue.title"]}) == [
        "github.event.issue.title"
    ]
    assert tracker.sources_of(node, {}) == []


def test_trigger_analyzer_equality(parse_workflow):
    workflow, job = job_with_if(parse_workflow, "github.event_name == 'push'")
    analyzer = JobTriggerAnalyzer(workflow.event_names())
    assert analyzer.effective_triggers(job) == ["push"]
    assert not analyzer.has_privileged_trigger(job)


def test_trigger_analyzer_inequality(parse_workflow):
    workflow, job = job_with_if(parse_workflow, "github.event_name != 'issues'")
    analyzer = JobTriggerAnalyzer(workflow.event_names())
    assert analyzer.effective_triggers(job) == ["push", "pull_request_target"]
    assert analyzer.has_privileged_trigger(job)


def test_trigger_analyzer_contains_list(parse_workflow):
    workflow, job = job_with_if(
        parse_workflow, """${{ contains(fromJSON('["push", "issues"]'), github.event_name) }}"""
    )
    analyzer = JobTriggerAnalyzer(workflow.event_names())
    assert analyzer.effective_triggers(job) == ["push", "issues"]


def test_trigger_analyzer_logical_operators(parse_workflow):
    workflow, job = job_with_if(
        parse_workflow, "github.event_name == 'push' || github.event_name == 'issues'"
    )
    analyzer = JobTriggerAnalyzer(workflow.event_names())
    assert analyzer.effective_triggers(job) == ["push", "issues"]

    workflow, job = job_with_if(
        parse_workflow, "github.event_name == 'push' && github.actor == 'octocat'"
    )
    assert JobTriggerAnalyzer(workflow.event_names()).effective_triggers(job) == ["push"]

    workflow, job = job_with_if(parse_workflow, "\"!(github.event_name == 'push')\"")
    assert JobTriggerAnalyzer(workflow.event_names()).effective_triggers(job) == [
        "pull_request_target",
        "issues",
    ]


def test_trigger_analyzer_unknown_condition(parse_workflow):
    workflow, job = job_with_if(parse_workflow, "github.actor == 'octocat'")
    analyzer = JobTriggerAnalyzer(workflow.event_names())
    assert analyzer.effective_triggers(job) == ["push", "pull_request_target", "issues"]
