"""
Policy core.

Rule store, rules-file parsing and the authorization engine.
"""

from usbgate.policy.admin import (
    SubmissionReport,
    SubmissionResult,
    submit_rule_lines,
    submit_serials,
)
from usbgate.policy.engine import AuthorizationEngine, request_from_descriptor
from usbgate.policy.errors import (
    CapacityExceeded,
    EmptyInput,
    InvalidSerial,
    MalformedLine,
    PolicyError,
)
from usbgate.policy.models import (
    MAX_RULES,
    MAX_SERIALS,
    AuditRecord,
    AuthorizationDecision,
    AuthorizationRequest,
    DenyReason,
    IdentityRule,
    LoadReport,
    SkippedLine,
    SkipReason,
    Verdict,
)
from usbgate.policy.parser import (
    parse_identity,
    parse_rule_line,
    read_policy_source,
)
from usbgate.policy.store import PolicyStore

__all__ = [
    # Store and engine
    "PolicyStore",
    "AuthorizationEngine",
    "request_from_descriptor",
    # Admin
    "SubmissionReport",
    "SubmissionResult",
    "submit_rule_lines",
    "submit_serials",
    # Errors
    "PolicyError",
    "MalformedLine",
    "CapacityExceeded",
    "EmptyInput",
    "InvalidSerial",
    # Models
    "MAX_RULES",
    "MAX_SERIALS",
    "AuditRecord",
    "AuthorizationDecision",
    "AuthorizationRequest",
    "DenyReason",
    "IdentityRule",
    "LoadReport",
    "SkippedLine",
    "SkipReason",
    "Verdict",
    # Parser
    "parse_identity",
    "parse_rule_line",
    "read_policy_source",
]
