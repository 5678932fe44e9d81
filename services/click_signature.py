"""Click SHOP-API request signing.

v1 field order for prepare:
    click_trans_id + service_id + SECRET + merchant_trans_id + amount + action + sign_time
complete additionally carries merchant_prepare_id right after merchant_trans_id.
"""
import hashlib
import hmac

SIGNATURE_VERSION = 1

ACTION_PREPARE = 0
ACTION_COMPLETE = 1


def canonical_string(params, secret_key, version=SIGNATURE_VERSION):
    if version != 1:
        raise ValueError("unsupported signature version: %r" % version)

    parts = [
        str(params.get("click_trans_id", "")),
        str(params.get("service_id", "")),
        secret_key,
        str(params.get("merchant_trans_id", "")),
    ]
    if str(params.get("action")) == str(ACTION_COMPLETE):
        parts.append(str(params.get("merchant_prepare_id", "")))
    parts.extend([
        str(params.get("amount", "")),
        str(params.get("action", "")),
        str(params.get("sign_time", "")),
    ])
    return "".join(parts)


def sign(params, secret_key, version=SIGNATURE_VERSION):
    return hashlib.md5(canonical_string(params, secret_key, version).encode("utf-8")).hexdigest()


def verify(params, secret_key, version=SIGNATURE_VERSION):
    provided = str(params.get("sign_string") or "").lower()
    if not provided or not secret_key:
        return False
    return hmac.compare_digest(sign(params, secret_key, version), provided)
