#!/usr/bin/env python3
"""
Validate that docs/test_scenarios_business_summary.md stays in sync with
tests/test_integration_scenarios.py.

Checks:
1. Every scenario class in the test file is documented
2. Every scenario method is documented
3. Documented scenarios that no longer exist are reported

Run: python scripts/validate_test_docs_sync.py
"""

import re
import sys
from pathlib import Path

CLASS_MARKER = re.compile(r'\*\*Test Class\*\*:\s*`(Test\w+)`')
METHOD_MARKER = re.compile(r'\*\*Test Method\*\*:\s*`(test_\w+)`')


def collect_scenarios(test_file: Path) -> dict[str, list[str]]:
    """Map each Test* class in the scenario file to its test_* methods."""
    scenarios = {}
    current = None

    for line in test_file.read_text().splitlines():
        class_match = re.match(r'^class (Test\w+)', line)
        if class_match:
            current = class_match.group(1)
            scenarios[current] = []
        elif current:
            method_match = re.match(r'^\s+def (test_\w+)', line)
            if method_match:
                scenarios[current].append(method_match.group(1))

    return scenarios


def collect_documented(doc_file: Path) -> tuple[set[str], set[str]]:
    text = doc_file.read_text()
    return set(CLASS_MARKER.findall(text)), set(METHOD_MARKER.findall(text))


def compare(scenarios: dict[str, list[str]], documented: tuple[set[str], set[str]]) -> tuple[list[str], list[str]]:
    """Return (errors, warnings) for undocumented and stale entries."""
    doc_classes, doc_methods = documented
    methods = {m for names in scenarios.values() for m in names}

    errors = [f"Missing class documentation: {c}" for c in sorted(set(scenarios) - doc_classes)]
    errors += [f"Missing method documentation: {m}" for m in sorted(methods - doc_methods)]
    warnings = [f"Documented class no longer exists: {c}" for c in sorted(doc_classes - set(scenarios))]
    warnings += [f"Documented method no longer exists: {m}" for m in sorted(doc_methods - methods)]
    return errors, warnings


def main():
    project_root = Path(__file__).parent.parent
    test_file = project_root / 'tests' / 'test_integration_scenarios.py'
    doc_file = project_root / 'docs' / 'test_scenarios_business_summary.md'

    for path in (test_file, doc_file):
        if not path.exists():
            print(f"❌ File not found: {path}")
            sys.exit(1)

    scenarios = collect_scenarios(test_file)
    documented = collect_documented(doc_file)
    errors, warnings = compare(scenarios, documented)

    print("=" * 60)
    print("Negotiation Scenario Docs Sync")
    print("=" * 60)
    print(f"\nScenario classes: {len(scenarios)}")
    print(f"Scenario methods: {sum(len(m) for m in scenarios.values())}")

    for error in errors:
        print(f"❌ {error}")
    for warning in warnings:
        print(f"⚠️  {warning}")
    if not errors and not warnings:
        print("\n✅ All scenarios are documented and in sync!")

    print("\nCoverage by Class:")
    _, doc_methods = documented
    for cls, methods in sorted(scenarios.items()):
        print(f"\n  {cls}")
        for method in methods:
            print(f"      {'✅' if method in doc_methods else '❌'} {method}")

    sys.exit(1 if errors else 0)


if __name__ == '__main__':
    main()
