from policygate.reporting.compliance_report import (
    SCHEMA_VERSION,
    ComplianceReport,
    build_compliance_report,
    exit_code_for_score,
    format_compliance_report,
)
from policygate.reporting.schema_validation import validate_compliance_report
from policygate.reporting.write_report import write_json_report_atomic

__all__ = [
    "SCHEMA_VERSION",
    "ComplianceReport",
    "build_compliance_report",
    "exit_code_for_score",
    "format_compliance_report",
    "validate_compliance_report",
    "write_json_report_atomic",
]
