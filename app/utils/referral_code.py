import secrets
from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl

# No 0/O, 1/I/l lookalikes
URL_SAFE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"
REFERRAL_CODE_PREFIX = "ref_"
REFERRAL_CODE_RANDOM_LENGTH = 12
REFERRAL_LINK_PARAM = "ref__"


def generate_referral_code() -> str:
    random_part = "".join(secrets.choice(URL_SAFE_CHARS) for _ in range(REFERRAL_CODE_RANDOM_LENGTH))
    return f"{REFERRAL_CODE_PREFIX}{random_part}"


def build_referral_link(base_url: str, referral_code: str) -> str:
    parts = urlparse(base_url)
    query = dict(parse_qsl(parts.query))
    query[REFERRAL_LINK_PARAM] = referral_code
    return urlunparse(parts._replace(query=urlencode(query)))
