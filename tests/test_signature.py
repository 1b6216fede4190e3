import hashlib
import hmac

from atende.services.signature import verify_signature

BODY = b'{"object":"whatsapp_business_account"}'


def sign(body, secret="app-secret"):
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestVerifySignature:
    def test_skipped_without_secret(self):
        result = verify_signature(BODY, {}, None)
        assert result.valid and result.skipped

    def test_valid_signature(self):
        result = verify_signature(BODY, {"x-hub-signature-256": sign(BODY)}, "app-secret")
        assert result.valid and not result.skipped

    def test_missing_header(self):
        assert verify_signature(BODY, {}, "app-secret").error == "missing_signature"

    def test_bad_format(self):
        assert verify_signature(BODY, {"x-hub-signature-256": "md5=abc"}, "app-secret").error == (
            "invalid_signature_format"
        )

    def test_mismatch(self):
        result = verify_signature(BODY + b" ", {"x-hub-signature-256": sign(BODY)}, "app-secret")
        assert not result.valid
        assert result.error == "signature_mismatch"
