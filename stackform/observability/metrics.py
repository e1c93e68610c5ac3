"""Prometheus metrics for the descriptor compiler.

Design principles:
- Low-cardinality labels only (rule id, severity, outcome; never service names)
- Counters incremented once per validation / assembly, not per manifest field
"""
from prometheus_client import Counter

violations_total = Counter(
    "stackform_violations_total",
    "Validation violations reported, by rule and severity",
    ["rule", "severity"]
)

assemblies_total = Counter(
    "stackform_assemblies_total",
    "Release assemblies attempted, by outcome",
    ["outcome"]
)

manifests_rendered_total = Counter(
    "stackform_manifests_rendered_total",
    "Resource manifests rendered, by kind",
    ["kind"]
)
