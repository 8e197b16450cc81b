"""Application constants."""

# Hard cap on credits a single rep/DM relationship may earn per month.
# Mirrored by the ck_dm_rep_credit_usage_cap check constraint.
COUNTERPARTY_CREDIT_CAP = 3

# Month keys are "YYYY-MM"
MONTH_FORMAT = "%Y-%m"
