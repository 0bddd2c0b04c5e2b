"""
WhatsApp Cloud API error codes the notifier cares about.

See Meta's "Error codes" reference for the full list.
"""

# Recipient outside the customer service window / engagement policy.
# A plain text message re-opens the conversation.
ERROR_REENGAGEMENT_MESSAGE = 131047
ERROR_ECOSYSTEM_ENGAGEMENT = 131049
ERROR_LEGACY_REENGAGEMENT = 470

POLICY_REJECTION_CODES = frozenset(
    {
        ERROR_REENGAGEMENT_MESSAGE,
        ERROR_ECOSYSTEM_ENGAGEMENT,
        ERROR_LEGACY_REENGAGEMENT,
    }
)

# Hard failures (no fallback)
ERROR_INVALID_PARAMETER = 100
ERROR_ACCOUNT_LOCKED = 131031
ERROR_UNDELIVERABLE = 131026
ERROR_TEMPLATE_DOES_NOT_EXIST = 132001
