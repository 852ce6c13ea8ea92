"""
test_checkout_rules.py - Tests for untrusted checkout and TOCTOU rules
"""

from wflint.core import Position

HEAD_REF = "${{ github.event.pull_request.head.ref }}"
HEAD_SHA = "${{ github.event.pull_request.head.sha }}"


def checkout_workflow(after, ref=HEAD_REF, on="pull_request_target", job_extra=""):
    return (
        f"on: {on}\n"
        "permissions:\n  contents: read\n"
        "jobs:\n  build:\n    runs-on: ubuntu-latest\n    timeout-minutes: 5\n"
        + job_extra
        + "    steps:\n"
        "      - uses: actions/checkout@v4\n"
        "        with:\n"
        f"          ref: {ref}\n"
        + after
    )


def test_run_after_untrusted_checkout(diagnostics_for):
    content = checkout_workflow("      - run: npm install\n      - run: npm test\n")
    found = diagnostics_for(content, "untrusted-checkout-critical")
    assert len(found) == 1
    assert found[0].position == Position(12, 9)
    assert found[0].severity == "CRITICAL"
    assert "step 2 runs code from the untrusted checkout" in found[0].message
    assert "at line 9" in found[0].message
    assert "privileged trigger(s) pull_request_target" in found[0].message
    assert diagnostics_for(content, "untrusted-checkout-high") == []


def test_local_action_after_untrusted_checkout(diagnostics_for):
    content = checkout_workflow("      - uses: ./.github/actions/build\n", ref=HEAD_SHA)
    assert len(diagnostics_for(content, "untrusted-checkout-critical")) == 1
    assert diagnostics_for(content, "untrusted-checkout-high") == []


def test_third_party_action_after_untrusted_checkout(diagnostics_for):
    content = checkout_workflow(
        "      - name: Lint\n        uses: github/super-linter@v5\n"
    )
    found = diagnostics_for(content, "untrusted-checkout-high")
    assert len(found) == 1
    assert "step 'Lint' runs action 'github/super-linter@v5' on the untrusted checkout" in found[0].message
    assert diagnostics_for(content, "untrusted-checkout-critical") == []


def test_unprivileged_trigger_is_fine(diagnostics_for):
    content = checkout_workflow("      - run: npm test\n", on="pull_request")
    assert diagnostics_for(content, "untrusted-checkout-critical") == []


def test_job_condition_excludes_privileged_trigger(diagnostics_for):
    content = checkout_workflow(
        "      - run: npm test\n",
        on="[push, pull_request_target]",
        job_extra="    if: github.event_name == 'push'\n",
    )
    assert diagnostics_for(content, "untrusted-checkout-critical") == []


def test_trusted_checkout_replaces_workspace(diagnostics_for):
    content = checkout_workflow(
        "      - uses: actions/checkout@v4\n      - run: npm test\n"
    )
    assert diagnostics_for(content, "untrusted-checkout-critical") == []


def test_checkout_without_consumer(diagnostics_for):
    content = checkout_workflow("")
    assert diagnostics_for(content, "untrusted-checkout-critical") == []
    assert diagnostics_for(content, "untrusted-checkout-high") == []


def test_toctou_with_labeled_event(diagnostics_for):
    content = """on:
  pull_request_target:
    types: [labeled]
permissions:
  contents: read
jobs:
  test:
    runs-on: ubuntu-latest
    timeout-minutes: 5
    steps:
      - uses: actions/checkout@v4
        with:
          ref: ${{ github.event.pull_request.head.ref }}
"""
    found = diagnostics_for(content, "untrusted-checkout-toctou-critical")
    assert len(found) == 1
    assert found[0].position == Position(11, 9)
    assert "mutable reference" in found[0].message
    assert "'labeled' event type on 'pull_request_target' trigger (line 3)" in found[0].message
    assert diagnostics_for(content, "untrusted-checkout-toctou-high") == []


def test_toctou_pinned_commit_is_fine(diagnostics_for):
    content = """on:
  pull_request_target:
    types: [labeled, opened]
jobs:
  test:
    runs-on: ubuntu-latest
    timeout-minutes: 5
    steps:
      - uses: actions/checkout@v4
        with:
          ref: ${{ github.event.pull_request.head.sha }}
"""
    assert diagnostics_for(content, "untrusted-checkout-toctou-critical") == []


def test_toctou_with_environment_approval(diagnostics_for):
    content = checkout_workflow("", job_extra="    environment: external-pr\n")
    found = diagnostics_for(content, "untrusted-checkout-toctou-high")
    assert len(found) == 1
    assert found[0].position == Position(10, 9)
    assert "approval through environment 'external-pr'" in found[0].message
    assert diagnostics_for(content, "untrusted-checkout-toctou-critical") == []


def test_toctou_environment_mapping_form(diagnostics_for):
    content = checkout_workflow(
        "",
        job_extra="    environment:\n      name: external-pr\n      url: https://example.com\n",
    )
    assert len(diagnostics_for(content, "untrusted-checkout-toctou-high")) == 1


def test_toctou_without_environment(diagnostics_for):
    content = checkout_workflow("")
    assert diagnostics_for(content, "untrusted-checkout-toctou-high") == []
