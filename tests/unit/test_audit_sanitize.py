"""
Unit tests for audit body sanitization.
"""

from ledger_services.audit_sink import MAX_DEPTH, REDACTED, sanitize_for_audit


class TestSanitizeForAudit:
    def test_sensitive_keys_redacted(self):
        body = {
            "reference_id": "order_1",
            "api_key": "sk_live_123",
            "bank": {"routing_number": "021000021", "account_number": "1234"},
            "Access_Token": "abc",
        }

        clean = sanitize_for_audit(body)

        assert clean["reference_id"] == "order_1"
        assert clean["api_key"] == REDACTED
        assert clean["bank"] == {"routing_number": REDACTED, "account_number": REDACTED}
        assert clean["Access_Token"] == REDACTED

    def test_lists_are_walked(self):
        clean = sanitize_for_audit({"items": [{"password": "p"}, {"amount": 5}]})

        assert clean == {"items": [{"password": REDACTED}, {"amount": 5}]}

    def test_input_not_mutated(self):
        body = {"secret": "s"}
        sanitize_for_audit(body)
        assert body == {"secret": "s"}

    def test_depth_is_capped(self):
        body: dict = {}
        node = body
        for _ in range(MAX_DEPTH + 5):
            node["child"] = {}
            node = node["child"]

        clean = sanitize_for_audit(body)

        for _ in range(MAX_DEPTH + 1):
            clean = clean["child"]
        assert clean == "[max depth]"
